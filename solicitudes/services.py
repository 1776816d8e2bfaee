# solicitudes/services.py
import logging
import random
from dataclasses import dataclass

from django.conf import settings
from django.db import IntegrityError, transaction

from core.auth import (
    es_admin, es_cliente_duenio, exigir_rol, jefe_id, mecanico_id, tiene_rol,
)
from core.errors import (
    EstadoInvalido, ErrorValidacion, Prohibido, SinJefeDisponible,
)
from core.models import Jefe
from core.roles import ADMIN_CLIENTE, ADMIN_JEFE, ADMIN_MECANICO_JEFE
from taller import services as taller_services
from taller.models import Auto, Reparacion
from taller.services import Disparador as DisparadorAuto
from .models import ESTADOS_VIVOS, EstadoSolicitud, SolicitudServicio

logger = logging.getLogger(__name__)


class Disparador:
    ASIGNAR = "ASIGNAR"
    ENVIAR_PRESUPUESTO = "ENVIAR_PRESUPUESTO"
    ACEPTAR_PRESUPUESTO = "ACEPTAR_PRESUPUESTO"
    RECHAZAR_PRESUPUESTO = "RECHAZAR_PRESUPUESTO"
    INICIAR_REPARACION = "INICIAR_REPARACION"
    COMPLETAR = "COMPLETAR"
    CANCELAR = "CANCELAR"


# -------- compuertas sobre los ids guardados en la solicitud --------

def _es_duenio(actor, s):
    return es_admin(actor) or es_cliente_duenio(actor, s.cliente_id)


def _es_jefe_de_la_solicitud(actor, s):
    return es_admin(actor) or (jefe_id(actor) is not None and jefe_id(actor) == s.jefe_asignado_id)


def _es_participante(actor, s):
    """Mecánico asignado, su jefe (o el de la solicitud) o admin."""
    if es_admin(actor):
        return True
    if tiene_rol(actor, "mecanico"):
        return s.mecanico_asignado_id is not None and mecanico_id(actor) == s.mecanico_asignado_id
    if tiene_rol(actor, "jefe"):
        jid = jefe_id(actor)
        if jid is None:
            return False
        jefe_del_mecanico = getattr(s.mecanico_asignado, "jefe_id", None) if s.mecanico_asignado_id else None
        return jid in (s.jefe_asignado_id, jefe_del_mecanico)
    return False


@dataclass(frozen=True)
class Transicion:
    destino: str
    desde: frozenset
    roles: tuple
    guardia: object                     # callable(actor, solicitud) -> bool
    disparador_auto: str
    requiere_mecanico: bool = True


# Tabla única de verdad del ciclo de vida de la solicitud
TRANSICIONES = {
    Disparador.ASIGNAR: Transicion(
        EstadoSolicitud.ASIGNADA,
        frozenset({EstadoSolicitud.PENDIENTE}),
        ADMIN_JEFE, _es_jefe_de_la_solicitud,
        DisparadorAuto.MECANICO_ASIGNADO,
        requiere_mecanico=False,
    ),
    Disparador.ENVIAR_PRESUPUESTO: Transicion(
        EstadoSolicitud.PRESUPUESTO_ENVIADO,
        frozenset({EstadoSolicitud.ASIGNADA, EstadoSolicitud.EN_REPARACION}),
        ADMIN_MECANICO_JEFE, _es_participante,
        DisparadorAuto.PRESUPUESTO_ENVIADO,
    ),
    Disparador.ACEPTAR_PRESUPUESTO: Transicion(
        EstadoSolicitud.EN_REPARACION,
        frozenset({EstadoSolicitud.PRESUPUESTO_ENVIADO}),
        ADMIN_CLIENTE, _es_duenio,
        DisparadorAuto.PRESUPUESTO_ACEPTADO,
    ),
    Disparador.RECHAZAR_PRESUPUESTO: Transicion(
        EstadoSolicitud.RECHAZADA,
        frozenset({EstadoSolicitud.PRESUPUESTO_ENVIADO}),
        ADMIN_CLIENTE, _es_duenio,
        DisparadorAuto.PRESUPUESTO_RECHAZADO,
    ),
    Disparador.INICIAR_REPARACION: Transicion(
        EstadoSolicitud.EN_REPARACION,
        frozenset({EstadoSolicitud.ASIGNADA, EstadoSolicitud.PRESUPUESTO_ENVIADO}),
        ADMIN_MECANICO_JEFE, _es_participante,
        DisparadorAuto.REPARACION_INICIADA,
    ),
    Disparador.COMPLETAR: Transicion(
        EstadoSolicitud.COMPLETADA,
        frozenset({EstadoSolicitud.EN_REPARACION}),
        ADMIN_MECANICO_JEFE, _es_participante,
        DisparadorAuto.REPARACION_FINALIZADA,
    ),
    Disparador.CANCELAR: Transicion(
        EstadoSolicitud.CANCELADA,
        ESTADOS_VIVOS,
        ADMIN_CLIENTE, _es_duenio,
        DisparadorAuto.CANCELACION,
        requiere_mecanico=False,
    ),
}


@transaction.atomic
def aplicar_transicion(solicitud: SolicitudServicio, disparador: str, actor, datos=None, notificador=None):
    """
    Aplica una transición de la solicitud y, como efecto, la del auto.

    `datos` admite:
      - campos: valores a persistir en la solicitud junto con el estado
      - auto: payload para la transición del auto (mecanico, presupuesto, ...)
    """
    t = TRANSICIONES.get(disparador)
    if t is None:
        raise ErrorValidacion(f"Disparador desconocido: {disparador}")
    datos = datos or {}

    exigir_rol(actor, *t.roles)
    if not t.guardia(actor, solicitud):
        raise Prohibido("Acceso denegado. No participas de esta solicitud.")

    anterior = (
        SolicitudServicio.objects.select_for_update()
        .values_list("estado", flat=True)
        .get(pk=solicitud.pk)
    )
    solicitud.estado = anterior
    if anterior not in t.desde:
        raise EstadoInvalido(
            f"Transición inválida: la solicitud está {EstadoSolicitud(anterior).label.lower()}"
        )
    if t.requiere_mecanico and solicitud.mecanico_asignado_id is None:
        raise EstadoInvalido("La solicitud no tiene mecánico asignado")

    campos = ["estado", "actualizado_en"]
    for campo, valor in (datos.get("campos") or {}).items():
        setattr(solicitud, campo, valor)
        campos.append(campo)
    solicitud.estado = t.destino
    solicitud._actor = actor
    solicitud.save(update_fields=campos)

    logger.info(
        "Solicitud #%s: %s → %s (%s)",
        solicitud.pk, EstadoSolicitud(anterior).label, EstadoSolicitud(t.destino).label, disparador,
    )

    taller_services.aplicar_transicion(
        solicitud.auto, t.disparador_auto, actor, datos.get("auto"), notificador=notificador,
    )
    return solicitud


# -------- creación y ruteo --------

def rutear_jefe(mecanico_preferido=None, elegir=random.choice):
    """Jefe del mecánico preferido; si no hay, uno al azar entre todos."""
    if mecanico_preferido is not None and mecanico_preferido.jefe_id:
        return mecanico_preferido.jefe
    jefes = list(Jefe.objects.all())
    if not jefes:
        raise SinJefeDisponible()
    return elegir(jefes)


@transaction.atomic
def crear_solicitud(actor, auto: Auto, descripcion, mecanico_preferido=None, notificador=None,
                    elegir=random.choice):
    exigir_rol(actor, "cliente", "jefe", "admin")
    if tiene_rol(actor, "cliente") and not es_cliente_duenio(actor, auto.cliente_id):
        raise Prohibido("Acceso denegado. El auto no te pertenece.")
    descripcion = (descripcion or "").strip()
    if not descripcion:
        raise ErrorValidacion("La descripción es requerida", datos={"description": ["Requerido"]})

    # serializa las altas concurrentes sobre el mismo auto
    Auto.objects.select_for_update().filter(pk=auto.pk).first()
    if SolicitudServicio.objects.filter(auto=auto, estado__in=ESTADOS_VIVOS).exists():
        raise EstadoInvalido("El auto ya tiene una solicitud en curso")

    jefe = rutear_jefe(mecanico_preferido, elegir=elegir)
    try:
        with transaction.atomic():
            solicitud = SolicitudServicio(
                auto=auto,
                cliente_id=auto.cliente_id,
                mecanico_preferido=mecanico_preferido,
                jefe_asignado=jefe,
                descripcion=descripcion,
                estado=EstadoSolicitud.PENDIENTE,
            )
            solicitud._actor = actor
            solicitud.save()
    except IntegrityError:
        raise EstadoInvalido("El auto ya tiene una solicitud en curso")

    logger.info("Solicitud #%s creada para %s (jefe #%s)", solicitud.pk, auto.patente, jefe.pk)
    taller_services.aplicar_transicion(auto, DisparadorAuto.SOLICITUD_CREADA, actor, notificador=notificador)
    return solicitud


# -------- operaciones del ciclo de vida --------

def asignar_mecanico(solicitud: SolicitudServicio, actor, mecanico, notificador=None):
    if tiene_rol(actor, "jefe") and mecanico.jefe_id != jefe_id(actor):
        raise Prohibido("Acceso denegado. El mecánico no pertenece a tu equipo.")
    return aplicar_transicion(
        solicitud, Disparador.ASIGNAR, actor,
        {"campos": {"mecanico_asignado": mecanico}, "auto": {"mecanico": mecanico}},
        notificador=notificador,
    )


def enviar_presupuesto(solicitud: SolicitudServicio, actor, descripcion, costo, notificador=None):
    descripcion = (descripcion or "").strip()
    if not descripcion:
        raise ErrorValidacion("La descripción del presupuesto es requerida", datos={"description": ["Requerido"]})
    if costo is None or costo < 0:
        raise ErrorValidacion("El costo debe ser >= 0", datos={"cost": ["Debe ser >= 0"]})
    return aplicar_transicion(
        solicitud, Disparador.ENVIAR_PRESUPUESTO, actor,
        {
            "campos": {"presupuesto_descripcion": descripcion, "presupuesto_costo": costo},
            "auto": {"presupuesto": {"description": descripcion, "cost": costo}},
        },
        notificador=notificador,
    )


def _solicitud_con_presupuesto(auto: Auto, actor):
    exigir_rol(actor, *ADMIN_CLIENTE)
    if tiene_rol(actor, "cliente") and not es_cliente_duenio(actor, auto.cliente_id):
        raise Prohibido("Acceso denegado. El auto no te pertenece.")
    solicitud = (
        SolicitudServicio.objects.select_related("auto", "mecanico_asignado")
        .filter(auto=auto, estado=EstadoSolicitud.PRESUPUESTO_ENVIADO, mecanico_asignado__isnull=False)
        .first()
    )
    if solicitud is None:
        raise EstadoInvalido("No hay un presupuesto enviado para este auto")
    return solicitud


def aceptar_presupuesto(auto: Auto, actor, notificador=None):
    solicitud = _solicitud_con_presupuesto(auto, actor)
    aplicar_transicion(solicitud, Disparador.ACEPTAR_PRESUPUESTO, actor, notificador=notificador)
    auto.refresh_from_db()
    return solicitud


def rechazar_presupuesto(auto: Auto, actor, notificador=None):
    solicitud = _solicitud_con_presupuesto(auto, actor)
    aplicar_transicion(solicitud, Disparador.RECHAZAR_PRESUPUESTO, actor, notificador=notificador)
    auto.refresh_from_db()
    return solicitud


@transaction.atomic
def completar_solicitud(solicitud: SolicitudServicio, actor, costo=None, descripcion=None, notificador=None):
    """InRepair → Completed: crea la Reparación (una sola vez) y finaliza el auto."""
    if costo is None:
        costo = solicitud.presupuesto_costo
    if costo is None:
        raise ErrorValidacion(
            "El costo es requerido: la solicitud no tiene presupuesto", datos={"cost": ["Requerido"]}
        )
    if costo < 0:
        raise ErrorValidacion("El costo debe ser >= 0", datos={"cost": ["Debe ser >= 0"]})

    aplicar_transicion(solicitud, Disparador.COMPLETAR, actor, notificador=notificador)

    reparacion = Reparacion.objects.create(
        auto_id=solicitud.auto_id,
        mecanico_id=solicitud.mecanico_asignado_id,
        descripcion=descripcion or solicitud.presupuesto_descripcion or solicitud.descripcion,
        costo=costo,
        garantia_dias=settings.GARANTIA_DIAS_DEFAULT,
    )
    solicitud.reparacion = reparacion
    solicitud._actor = actor
    solicitud.save(update_fields=["reparacion", "actualizado_en"])
    logger.info("Reparación #%s creada desde la solicitud #%s", reparacion.pk, solicitud.pk)
    return solicitud


def actualizar_estado(solicitud: SolicitudServicio, actor, estado, costo=None, descripcion=None,
                      notificador=None):
    """Actualización directa de estado por el equipo del taller."""
    if estado == EstadoSolicitud.EN_REPARACION:
        return aplicar_transicion(solicitud, Disparador.INICIAR_REPARACION, actor, notificador=notificador)
    if estado == EstadoSolicitud.COMPLETADA:
        return completar_solicitud(solicitud, actor, costo=costo, descripcion=descripcion,
                                   notificador=notificador)
    raise ErrorValidacion(
        "Estado no permitido",
        datos={"status": [f"Valores válidos: {EstadoSolicitud.EN_REPARACION}, {EstadoSolicitud.COMPLETADA}"]},
    )


def cancelar_solicitud(solicitud: SolicitudServicio, actor, notificador=None):
    if solicitud.es_terminal:
        # compuerta antes que el estado
        if not (tiene_rol(actor, *ADMIN_CLIENTE) and _es_duenio(actor, solicitud)):
            raise Prohibido("Acceso denegado. No puedes cancelar esta solicitud.")
        raise EstadoInvalido("La solicitud ya está en un estado terminal")
    return aplicar_transicion(solicitud, Disparador.CANCELAR, actor, notificador=notificador)
