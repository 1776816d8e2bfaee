from core.api import api_view, leer_json, ok, entero, decimal_no_negativo, texto
from core.auth import es_admin, es_cliente_duenio, jefe_id, mecanico_id, tiene_rol
from core.errors import Prohibido, obtener_o_error
from core.models import Jefe, Mecanico
from core.roles import PERSONAL
from taller.models import Auto

from . import services
from .models import SolicitudServicio
from .serializers import solicitud_a_dict, solicitud_detalle_a_dict


def _solicitudes():
    return SolicitudServicio.objects.select_related(
        "auto", "cliente__user", "mecanico_asignado__user", "jefe_asignado"
    )


def _obtener(solicitud_id):
    return obtener_o_error(_solicitudes(), "Solicitud no encontrada", pk=solicitud_id)


def _puede_ver(user, s):
    if es_admin(user) or es_cliente_duenio(user, s.cliente_id):
        return True
    if tiene_rol(user, "jefe"):
        return jefe_id(user) is not None and jefe_id(user) in (
            s.jefe_asignado_id, getattr(s.mecanico_asignado, "jefe_id", None)
        )
    if tiene_rol(user, "mecanico"):
        return mecanico_id(user) in (s.mecanico_asignado_id, s.mecanico_preferido_id)
    return False


@api_view("POST")
def crear(request):
    data = leer_json(request)
    auto = obtener_o_error(Auto.objects.select_related("cliente"), "Auto no encontrado", pk=entero(data, "carId"))
    preferido_id = entero(data, "preferredMechanicId", requerido=False)
    preferido = (
        obtener_o_error(Mecanico, "Mecánico no encontrado", pk=preferido_id) if preferido_id else None
    )
    solicitud = services.crear_solicitud(
        request.user, auto, texto(data, "description", requerido=False), mecanico_preferido=preferido,
    )
    return ok(solicitud_a_dict(solicitud), "Solicitud creada", status=201)


@api_view("GET")
def detalle(request, solicitud_id):
    s = _obtener(solicitud_id)
    if not _puede_ver(request.user, s):
        raise Prohibido("Acceso denegado. No tienes permiso para ver esta solicitud.")
    return ok(solicitud_detalle_a_dict(s))


@api_view("GET")
def de_jefe(request, jefe_id_url):
    jefe = obtener_o_error(Jefe, "Jefe no encontrado", pk=jefe_id_url)
    if not (es_admin(request.user) or jefe_id(request.user) == jefe.id):
        raise Prohibido("Acceso denegado. No puedes ver solicitudes de otro jefe.")
    return ok([solicitud_detalle_a_dict(s) for s in _solicitudes().filter(jefe_asignado=jefe)])


@api_view("GET")
def de_mecanico(request, mecanico_id_url):
    mecanico = obtener_o_error(Mecanico, "Mecánico no encontrado", pk=mecanico_id_url)
    permitido = (
        es_admin(request.user)
        or mecanico_id(request.user) == mecanico.id
        or (tiene_rol(request.user, "jefe") and jefe_id(request.user) == mecanico.jefe_id)
    )
    if not permitido:
        raise Prohibido("Acceso denegado. No puedes ver solicitudes de otro mecánico.")
    return ok([solicitud_detalle_a_dict(s) for s in _solicitudes().filter(mecanico_asignado=mecanico)])


@api_view("GET")
def de_cliente(request, cliente_id):
    if not (tiene_rol(request.user, *PERSONAL) or es_cliente_duenio(request.user, cliente_id)):
        raise Prohibido("Acceso denegado. No puedes ver solicitudes de otros clientes.")
    return ok([solicitud_detalle_a_dict(s) for s in _solicitudes().filter(cliente_id=cliente_id)])


@api_view("PUT", "POST")
def asignar(request, solicitud_id):
    s = _obtener(solicitud_id)
    data = leer_json(request)
    mecanico = obtener_o_error(Mecanico, "Mecánico no encontrado", pk=entero(data, "mechanicId"))
    services.asignar_mecanico(s, request.user, mecanico)
    return ok(solicitud_a_dict(s), "Mecánico asignado")


@api_view("PUT", "POST")
def actualizar_estado(request, solicitud_id):
    s = _obtener(solicitud_id)
    data = leer_json(request)
    services.actualizar_estado(
        s, request.user,
        texto(data, "status"),
        costo=decimal_no_negativo(data, "cost", requerido=False),
        descripcion=texto(data, "description", requerido=False) or None,
    )
    return ok(solicitud_a_dict(s), f"Solicitud {s.get_estado_display().lower()}")


@api_view("POST")
def presupuesto(request, solicitud_id):
    s = _obtener(solicitud_id)
    data = leer_json(request)
    services.enviar_presupuesto(
        s, request.user,
        texto(data, "description", requerido=False),
        decimal_no_negativo(data, "cost"),
    )
    return ok(solicitud_a_dict(s), "Presupuesto enviado")


@api_view("POST")
def cancelar(request, solicitud_id):
    s = _obtener(solicitud_id)
    services.cancelar_solicitud(s, request.user)
    return ok(solicitud_a_dict(s), "Solicitud cancelada")
