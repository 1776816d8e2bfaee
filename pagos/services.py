# pagos/services.py
import json
import logging
import uuid
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.auth import es_admin, es_cliente_duenio, exigir_rol, tiene_rol
from core.cache import invalidar_namespace, NAMESPACE_REPARACIONES
from core.errors import (
    EstadoInvalido, ErrorValidacion, PagoPendienteDuplicado, Prohibido,
)
from core.roles import ADMIN_CLIENTE, SOLO_ADMIN
from core.services import auditar
from taller.models import Reparacion
from .models import EstadoPago, MetodoPago, Pago

logger = logging.getLogger(__name__)


def ventana_pendiente():
    return timedelta(minutes=settings.PAGO_PENDIENTE_MINUTOS)


def cancelable_desde(pago: Pago):
    return pago.creado_en + ventana_pendiente()


def estado_ventana(pago: Pago, ahora=None):
    """canCancelNow / canCancelAfter / minutesLeft de un pago pendiente."""
    ahora = ahora or timezone.now()
    despues = cancelable_desde(pago)
    puede = ahora >= despues
    restantes = 0
    if not puede:
        segundos = (despues - ahora).total_seconds()
        restantes = int(-(-segundos // 60))  # redondeo hacia arriba
    return {"canCancelNow": puede, "canCancelAfter": despues, "minutesLeft": restantes}


class ProveedorSimulado:
    """Proveedor de preferencias de pago sin pasarela real."""
    metodo = MetodoPago.MERCADOPAGO_SIMULATION

    def crear_preferencia(self, reparacion: Reparacion, monto):
        ref = f"sim_{uuid.uuid4().hex[:12]}_{reparacion.pk}"
        url = f"{settings.FRONTEND_URL}/home/client/repairs?payment=success&simulation=true"
        return {
            "preferenceId": ref,
            "externalId": ref,
            "initPoint": url,
            "sandboxInitPoint": url,
            "simulation": True,
        }


PROVEEDORES = {
    "simulacion": ProveedorSimulado,
}


def proveedor_por_defecto():
    clave = getattr(settings, "PAGOS_PROVEEDOR", "simulacion")
    try:
        return PROVEEDORES[clave]()
    except KeyError:
        raise ErrorValidacion(f"Proveedor de pagos desconocido: {clave}")


def _autorizar_pago(actor, cliente_id):
    exigir_rol(actor, *ADMIN_CLIENTE)
    if tiene_rol(actor, "cliente") and not es_cliente_duenio(actor, cliente_id):
        raise Prohibido("Acceso denegado. No puedes operar pagos de otros clientes.")


def _expirar(pago: Pago, actor, ahora):
    Pago.objects.filter(pk=pago.pk, estado=EstadoPago.PENDIENTE).update(
        estado=EstadoPago.CANCELADO, actualizado_en=ahora
    )
    logger.info("Pago pendiente #%s expirado automáticamente (reparación #%s)", pago.pk, pago.reparacion_id)
    auditar(
        "PAGOS", "EXPIRE", user=actor, object_repr=f"Pago #{pago.pk}",
        extra=json.dumps({"reparacion": pago.reparacion_id, "creado_en": pago.creado_en.isoformat()}),
    )


@transaction.atomic
def crear_preferencia(actor, reparacion: Reparacion, ahora=None, proveedor=None):
    """
    Crea un pago pendiente para la reparación:
    - un pendiente de hace menos de la ventana bloquea con PagoPendienteDuplicado
    - uno más viejo se cancela solo y se crea el nuevo
    """
    ahora = ahora or timezone.now()
    proveedor = proveedor or proveedor_por_defecto()

    # la fila de la reparación serializa los intentos concurrentes
    reparacion = (
        Reparacion.objects.select_for_update()
        .select_related("auto__cliente__user")
        .get(pk=reparacion.pk)
    )
    cliente = reparacion.auto.cliente
    _autorizar_pago(actor, cliente.id)

    if reparacion.costo is None or reparacion.costo <= 0:
        raise ErrorValidacion("La reparación no tiene un costo válido para pagar")

    user = cliente.user
    if not user.first_name or not user.last_name:
        raise ErrorValidacion("Datos de usuario incompletos. Nombre y apellido son requeridos.")

    existente = Pago.objects.filter(reparacion=reparacion, estado=EstadoPago.PENDIENTE).first()
    if existente is not None:
        if ahora - existente.creado_en >= ventana_pendiente():
            _expirar(existente, actor, ahora)
        else:
            raise PagoPendienteDuplicado(datos={
                "existingPaymentId": existente.pk,
                "createdAt": existente.creado_en.isoformat(),
                "canCancelAfter": cancelable_desde(existente).isoformat(),
            })

    preferencia = proveedor.crear_preferencia(reparacion, reparacion.costo)
    try:
        with transaction.atomic():
            pago = Pago.objects.create(
                reparacion=reparacion,
                cliente=cliente,
                monto=reparacion.costo,
                metodo=proveedor.metodo,
                estado=EstadoPago.PENDIENTE,
                referencia_externa=preferencia.get("externalId", ""),
            )
    except IntegrityError:
        otro = Pago.objects.filter(reparacion=reparacion, estado=EstadoPago.PENDIENTE).first()
        raise PagoPendienteDuplicado(datos={"existingPaymentId": getattr(otro, "pk", None)})

    logger.info("Pago #%s pendiente creado para la reparación #%s", pago.pk, reparacion.pk)
    transaction.on_commit(lambda: invalidar_namespace(NAMESPACE_REPARACIONES))
    return pago, preferencia


def pago_pendiente(actor, reparacion: Reparacion):
    """Pago pendiente de la reparación (o None), con el estado de su ventana."""
    _autorizar_pago(actor, reparacion.auto.cliente_id)
    pago = Pago.objects.filter(reparacion=reparacion, estado=EstadoPago.PENDIENTE).first()
    if pago is None:
        return None, None
    return pago, estado_ventana(pago)


@transaction.atomic
def cancelar_pago(actor, pago: Pago):
    # la ventana solo gobierna el reemplazo automático; cancelar a mano siempre se puede
    pago = Pago.objects.select_for_update().get(pk=pago.pk)
    if not (es_admin(actor) or es_cliente_duenio(actor, pago.cliente_id)):
        raise Prohibido("Acceso denegado. No tienes permiso para cancelar este pago.")
    if pago.estado != EstadoPago.PENDIENTE:
        raise EstadoInvalido("Solo se pueden cancelar pagos pendientes")
    pago.estado = EstadoPago.CANCELADO
    pago.save(update_fields=["estado", "actualizado_en"])
    auditar("PAGOS", "CANCEL", user=actor, object_repr=f"Pago #{pago.pk}")
    transaction.on_commit(lambda: invalidar_namespace(NAMESPACE_REPARACIONES))
    return pago


@transaction.atomic
def confirmar_pago(actor, pago: Pago, referencia=None):
    exigir_rol(actor, *SOLO_ADMIN)
    pago = Pago.objects.select_for_update().get(pk=pago.pk)
    if pago.estado != EstadoPago.PENDIENTE:
        raise EstadoInvalido("Solo se pueden confirmar pagos pendientes")
    pago.estado = EstadoPago.PAGADO
    campos = ["estado", "actualizado_en"]
    if referencia:
        pago.referencia_externa = referencia
        campos.append("referencia_externa")
    pago.save(update_fields=campos)
    logger.info("Pago #%s confirmado", pago.pk)
    auditar("PAGOS", "CONFIRM", user=actor, object_repr=f"Pago #{pago.pk}")
    transaction.on_commit(lambda: invalidar_namespace(NAMESPACE_REPARACIONES))
    return pago
