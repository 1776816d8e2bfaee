# taller/services.py
import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction
from django.db.models import ProtectedError
from django.utils import timezone

from core.auth import exigir_rol, es_cliente_duenio, tiene_rol
from core.cache import invalidar_namespace, NAMESPACE_REPARACIONES
from core.errors import EstadoInvalido, ErrorValidacion, Prohibido
from core.roles import (
    ADMIN_CLIENTE, ADMIN_MECANICO_JEFE, ADMIN_RECEPCIONISTA, ADMIN_JEFE, SOLO_ADMIN,
)
from notificaciones.despachador import notificador_por_defecto
from pagos.models import EstadoPago
from solicitudes.models import ESTADOS_VIVOS
from .models import Auto, EstadoAuto, HistorialEstadoAuto, Reparacion

logger = logging.getLogger(__name__)


class Disparador:
    SOLICITUD_CREADA = "SOLICITUD_CREADA"
    MECANICO_ASIGNADO = "MECANICO_ASIGNADO"
    PRESUPUESTO_ENVIADO = "PRESUPUESTO_ENVIADO"
    PRESUPUESTO_ACEPTADO = "PRESUPUESTO_ACEPTADO"
    PRESUPUESTO_RECHAZADO = "PRESUPUESTO_RECHAZADO"
    REPARACION_INICIADA = "REPARACION_INICIADA"
    REPARACION_FINALIZADA = "REPARACION_FINALIZADA"
    ENTREGA = "ENTREGA"
    CANCELACION = "CANCELACION"
    MANUAL = "MANUAL"


@dataclass(frozen=True)
class Transicion:
    destino: int | None                 # None: lo indica el payload (transición manual)
    roles: tuple
    desde: frozenset | None = None      # None: cualquier estado (lo gobierna la solicitud)
    intermedio: int | None = None       # paso de auditoría antes del destino
    requiere_duenio: bool = False       # un cliente solo actúa sobre sus autos
    aviso: str = "cambio_estado"


# Tabla única de verdad de la máquina de estados del auto
TRANSICIONES = {
    Disparador.SOLICITUD_CREADA: Transicion(
        EstadoAuto.PENDIENTE, ("cliente", "jefe", "admin"), requiere_duenio=True),
    Disparador.MECANICO_ASIGNADO: Transicion(EstadoAuto.EN_REVISION, ADMIN_JEFE),
    Disparador.PRESUPUESTO_ENVIADO: Transicion(
        EstadoAuto.PENDIENTE, ADMIN_MECANICO_JEFE, aviso="presupuesto"),
    Disparador.PRESUPUESTO_ACEPTADO: Transicion(
        EstadoAuto.EN_REPARACION, ADMIN_CLIENTE, requiere_duenio=True),
    Disparador.PRESUPUESTO_RECHAZADO: Transicion(
        EstadoAuto.ENTRADA, ADMIN_CLIENTE, intermedio=EstadoAuto.RECHAZADO, requiere_duenio=True),
    Disparador.REPARACION_INICIADA: Transicion(EstadoAuto.EN_REPARACION, ADMIN_MECANICO_JEFE),
    Disparador.REPARACION_FINALIZADA: Transicion(
        EstadoAuto.FINALIZADO, ADMIN_MECANICO_JEFE,
        desde=frozenset({EstadoAuto.ENTRADA, EstadoAuto.PENDIENTE, EstadoAuto.EN_REVISION, EstadoAuto.EN_REPARACION})),
    Disparador.ENTREGA: Transicion(
        EstadoAuto.ENTREGADO, ADMIN_RECEPCIONISTA,
        desde=frozenset(set(EstadoAuto.values) - {EstadoAuto.ENTREGADO})),
    Disparador.CANCELACION: Transicion(
        EstadoAuto.ENTRADA, ADMIN_CLIENTE, intermedio=EstadoAuto.CANCELADO, requiere_duenio=True),
    Disparador.MANUAL: Transicion(None, ADMIN_MECANICO_JEFE),
}


def validar_estado(codigo):
    try:
        codigo = int(codigo)
    except (TypeError, ValueError):
        raise ErrorValidacion("Estado no válido", datos={"newStatusId": ["Debe ser un código de estado"]})
    if codigo not in EstadoAuto.values:
        raise ErrorValidacion("Estado no válido", datos={"newStatusId": [f"Códigos válidos: {EstadoAuto.values}"]})
    return codigo


def autorizar(auto: Auto, disparador: str, actor):
    t = TRANSICIONES[disparador]
    exigir_rol(actor, *t.roles)
    if t.requiere_duenio and tiene_rol(actor, "cliente") and not es_cliente_duenio(actor, auto.cliente_id):
        raise Prohibido("Acceso denegado. El auto no te pertenece.")


def _registrar_historial(auto, estados, disparador, actor, observaciones=""):
    ahora = timezone.now()
    HistorialEstadoAuto.objects.filter(auto=auto, fin__isnull=True).update(fin=ahora)
    usuario = actor if getattr(actor, "is_authenticated", False) else None
    for i, estado in enumerate(estados):
        HistorialEstadoAuto.objects.create(
            auto=auto,
            estado=estado,
            disparador=disparador,
            usuario=usuario,
            observaciones=observaciones,
            # los pasos intermedios quedan cerrados en el mismo instante
            fin=ahora if i < len(estados) - 1 else None,
        )


@transaction.atomic
def aplicar_transicion(auto: Auto, disparador: str, actor, datos=None, notificador=None):
    """
    Único punto de entrada de la máquina de estados del auto:
    - autoriza al actor según la tabla
    - valida el estado actual (leído con bloqueo de fila)
    - escribe el estado final una sola vez, con historial de cada paso
    - programa notificación e invalidación de cache para después del commit
    """
    t = TRANSICIONES.get(disparador)
    if t is None:
        raise ErrorValidacion(f"Disparador desconocido: {disparador}")
    datos = datos or {}
    notificador = notificador or notificador_por_defecto()

    autorizar(auto, disparador, actor)

    anterior = Auto.objects.select_for_update().values_list("estado", flat=True).get(pk=auto.pk)
    auto.estado = anterior
    if t.desde is not None and anterior not in t.desde:
        raise EstadoInvalido(
            f"Transición inválida: {EstadoAuto(anterior).label} no admite {disparador.lower()}"
        )

    destino = t.destino if t.destino is not None else validar_estado(datos.get("estado"))
    pasos = [t.intermedio, destino] if t.intermedio else [destino]
    _registrar_historial(auto, pasos, disparador, actor, datos.get("observaciones", ""))

    campos = ["estado"]
    auto.estado = destino
    if datos.get("descripcion") and disparador == Disparador.MANUAL:
        auto.descripcion = datos["descripcion"]
        campos.append("descripcion")
    if "mecanico" in datos:
        auto.mecanico = datos["mecanico"]
        campos.append("mecanico")
    auto.save(update_fields=campos)

    logger.info(
        "Auto %s: %s → %s (%s)",
        auto.patente, EstadoAuto(anterior).label, EstadoAuto(destino).label, disparador,
    )

    transaction.on_commit(lambda: invalidar_namespace(NAMESPACE_REPARACIONES))
    if t.aviso == "presupuesto":
        notificador.presupuesto(auto, datos.get("presupuesto") or {})
    else:
        notificador.cambio_estado(auto, anterior)
    return auto


# -------- operaciones directas sobre el auto --------

def transicion_manual(auto: Auto, actor, estado, descripcion=None, notificador=None):
    return aplicar_transicion(
        auto, Disparador.MANUAL, actor,
        {"estado": estado, "descripcion": descripcion},
        notificador=notificador,
    )


def entregar_auto(auto: Auto, actor, notificador=None):
    if auto.estado == EstadoAuto.ENTREGADO:
        raise EstadoInvalido("El auto ya fue entregado")
    return aplicar_transicion(auto, Disparador.ENTREGA, actor, notificador=notificador)


def _exigir_sin_solicitud_viva(auto: Auto):
    """Con una solicitud viva, la reparación la cierra la solicitud. Bloquea la fila del auto."""
    Auto.objects.select_for_update().values_list("pk", flat=True).get(pk=auto.pk)
    viva = auto.solicitudes.filter(estado__in=ESTADOS_VIVOS).first()
    if viva is not None:
        raise EstadoInvalido(
            f"El auto tiene la solicitud #{viva.pk} en curso ({viva.get_estado_display()}); "
            "la reparación se registra al completarla"
        )


def _validar_reparacion(descripcion, costo, campo_descripcion="description", campo_costo="cost"):
    if not descripcion:
        raise ErrorValidacion("La descripción es requerida", datos={campo_descripcion: ["Requerido"]})
    if costo is None or costo < 0:
        raise ErrorValidacion("El costo debe ser >= 0", datos={campo_costo: ["Debe ser >= 0"]})


@transaction.atomic
def finalizar_reparacion(auto: Auto, actor, descripcion, costo, mecanico=None, garantia_dias=None,
                         notificador=None):
    """Finaliza el trabajo directamente: registra la Reparación y pasa el auto a Finalizado."""
    _validar_reparacion(descripcion, costo, "finalDescription", "finalCost")
    autorizar(auto, Disparador.REPARACION_FINALIZADA, actor)
    _exigir_sin_solicitud_viva(auto)

    aplicar_transicion(auto, Disparador.REPARACION_FINALIZADA, actor, notificador=notificador)

    mecanico = mecanico or getattr(actor, "mecanico", None) or auto.mecanico
    return Reparacion.objects.create(
        auto=auto,
        mecanico=mecanico,
        descripcion=descripcion,
        costo=costo,
        garantia_dias=garantia_dias if garantia_dias is not None else settings.GARANTIA_DIAS_DEFAULT,
    )


@transaction.atomic
def crear_reparacion(auto: Auto, actor, mecanico, descripcion, costo, garantia_dias=None, notificador=None):
    """Alta directa de una reparación: el auto pasa a En Reparación."""
    _validar_reparacion(descripcion, costo)
    autorizar(auto, Disparador.REPARACION_INICIADA, actor)
    _exigir_sin_solicitud_viva(auto)

    reparacion = Reparacion.objects.create(
        auto=auto,
        mecanico=mecanico,
        descripcion=descripcion,
        costo=costo,
        garantia_dias=garantia_dias if garantia_dias is not None else settings.GARANTIA_DIAS_DEFAULT,
    )
    aplicar_transicion(
        auto, Disparador.REPARACION_INICIADA, actor, {"mecanico": mecanico}, notificador=notificador,
    )
    logger.info("Reparación #%s creada directamente para el auto %s", reparacion.pk, auto.patente)
    return reparacion


@transaction.atomic
def actualizar_reparacion(actor, reparacion: Reparacion, descripcion=None, costo=None, garantia_dias=None):
    """Corrección autorizada: admin, jefe o el mecánico de la reparación."""
    exigir_rol(actor, *ADMIN_MECANICO_JEFE)
    if tiene_rol(actor, "mecanico") and getattr(getattr(actor, "mecanico", None), "id", None) != reparacion.mecanico_id:
        raise Prohibido("Acceso denegado. No tienes permiso para actualizar esta reparación.")

    reparacion = Reparacion.objects.select_for_update().get(pk=reparacion.pk)
    campos = []
    if descripcion is not None:
        if not descripcion:
            raise ErrorValidacion("La descripción es requerida", datos={"description": ["Requerido"]})
        reparacion.descripcion = descripcion
        campos.append("descripcion")
    if costo is not None and costo != reparacion.costo:
        if reparacion.pagos.exclude(estado=EstadoPago.CANCELADO).exists():
            raise EstadoInvalido("No se puede corregir el costo de una reparación con pagos pendientes o realizados")
        reparacion.costo = costo
        campos.append("costo")
    if garantia_dias is not None:
        reparacion.garantia_dias = garantia_dias
        campos.append("garantia_dias")
    if campos:
        reparacion.save(update_fields=campos)
        logger.info("Reparación #%s corregida: %s", reparacion.pk, ", ".join(campos))
        transaction.on_commit(lambda: invalidar_namespace(NAMESPACE_REPARACIONES))
    return reparacion


# -------- registro de autos y reparaciones --------

@transaction.atomic
def registrar_auto(actor, cliente, **campos):
    """Ingreso de un vehículo: siempre arranca en Entrada."""
    exigir_rol(actor, "admin", "recepcionista", "cliente")
    if tiene_rol(actor, "cliente") and not es_cliente_duenio(actor, cliente.id):
        raise Prohibido("Acceso denegado. No puedes crear autos para otros clientes.")
    auto = Auto.objects.create(cliente=cliente, estado=EstadoAuto.ENTRADA, **campos)
    _registrar_historial(auto, [EstadoAuto.ENTRADA], "INGRESO", actor)
    logger.info("Auto %s ingresado para el cliente #%s", auto.patente, cliente.id)
    return auto


def actualizar_auto(actor, auto: Auto, **campos):
    """Datos del vehículo; el estado solo cambia por la máquina de estados."""
    exigir_rol(actor, *ADMIN_RECEPCIONISTA)
    for campo, valor in campos.items():
        setattr(auto, campo, valor)
    auto.save(update_fields=list(campos))
    logger.info("Auto #%s actualizado: %s", auto.pk, ", ".join(campos))
    transaction.on_commit(lambda: invalidar_namespace(NAMESPACE_REPARACIONES))
    return auto


def eliminar_auto(actor, auto: Auto):
    exigir_rol(actor, *SOLO_ADMIN)
    try:
        auto.delete()
    except ProtectedError:
        raise EstadoInvalido("No se puede eliminar un auto con reparaciones o solicitudes asociadas")
    transaction.on_commit(lambda: invalidar_namespace(NAMESPACE_REPARACIONES))


def eliminar_reparacion(actor, reparacion: Reparacion):
    exigir_rol(actor, *SOLO_ADMIN)
    try:
        reparacion.delete()
    except ProtectedError:
        raise EstadoInvalido("No se puede eliminar una reparación con pagos asociados")
    transaction.on_commit(lambda: invalidar_namespace(NAMESPACE_REPARACIONES))
