"""Armado y envío de los emails de cada tipo de trabajo (contenido mínimo)."""
import logging

from django.conf import settings
from django.core.mail import send_mail

from .models import TipoTrabajo

logger = logging.getLogger(__name__)

FIRMA = "\n\nEl equipo del Taller"


def _cambio_estado(p):
    car = p["carData"]
    asunto = f"Estado de su vehículo actualizado: {car.get('statusName', 'Actualizado')} - {car['licensePlate']}"
    cuerpo = (
        f"Hola {car.get('name', '')},\n\n"
        f"Le informamos que el estado de su vehículo {car['licensePlate']} ha sido actualizado.\n"
        f"Estado actual: {car.get('statusName', '')}"
    )
    if car.get("previousStatusName"):
        cuerpo += f"\nEstado anterior: {car['previousStatusName']}"
    return [car["email"]], asunto, cuerpo + FIRMA


def _presupuesto(p):
    car, budget = p["carData"], p["budgetData"]
    asunto = f"Presupuesto para su vehículo {car['licensePlate']}"
    cuerpo = (
        f"Hola {car.get('name', '')},\n\n"
        f"Preparamos un presupuesto para la reparación de su vehículo {car['licensePlate']}.\n"
        f"Descripción del trabajo: {budget.get('description', '')}\n"
        f"Costo estimado: ${float(budget.get('cost') or 0):.2f}\n\n"
        f"Para aceptar: {car.get('acceptUrl', '')}\n"
        f"Para rechazar: {car.get('rejectUrl', '')}"
    )
    return [car["email"]], asunto, cuerpo + FIRMA


def _registro(p):
    asunto = "Registro de sesión confirmado"
    cuerpo = (
        f"Hola {p.get('name', '')},\n\n"
        f"Te confirmamos que tu sesión se registró correctamente.\n"
        f"Fecha y hora: {p.get('loginDateTime', '')}\nEmail: {p['email']}"
    )
    return [p["email"]], asunto, cuerpo + FIRMA


def _bienvenida(p):
    asunto = "Bienvenido al Taller"
    cuerpo = f"Hola {p.get('name', '')}, tu cuenta como {p.get('roleName', 'usuario')} ha sido creada exitosamente."
    return [p["email"]], asunto, cuerpo + FIRMA


def _restablecer(p):
    asunto = "Restablecé tu contraseña"
    cuerpo = (
        f"Hola {p.get('name', '')},\n\n"
        f"Para restablecer tu contraseña accedé a:\n"
        f"{settings.FRONTEND_URL}/reset-password?uid={p['uid']}&token={p['token']}"
        f"\n\nEl enlace vence en {settings.PASSWORD_RESET_TIMEOUT // 60} minutos."
    )
    return [p["email"]], asunto, cuerpo + FIRMA


def _prueba(p):
    return [p["email"]], "Prueba de Email", "Email de prueba del sistema del Taller." + FIRMA


ARMADORES = {
    TipoTrabajo.CAMBIO_ESTADO: _cambio_estado,
    TipoTrabajo.PRESUPUESTO: _presupuesto,
    TipoTrabajo.REGISTRO_SESION: _registro,
    TipoTrabajo.BIENVENIDA: _bienvenida,
    TipoTrabajo.RESTABLECER_CLAVE: _restablecer,
    TipoTrabajo.PRUEBA: _prueba,
}


def enviar_trabajo(trabajo):
    armador = ARMADORES.get(trabajo.tipo)
    if armador is None:
        raise ValueError(f"Tipo de trabajo de email desconocido: {trabajo.tipo}")
    destinatarios, asunto, cuerpo = armador(trabajo.payload)
    enviados = send_mail(asunto, cuerpo, settings.DEFAULT_FROM_EMAIL, destinatarios, fail_silently=False)
    logger.info("Email %s #%s enviado a %s", trabajo.tipo, trabajo.pk, ", ".join(destinatarios))
    return enviados
