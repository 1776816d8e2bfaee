
from core.api import api_view, leer_json, ok, entero, decimal_no_negativo, texto
from core.auth import exigir_rol, require_roles, tiene_rol, es_cliente_duenio, mecanico_id
from core.cache import cache_get, NAMESPACE_REPARACIONES
from core.errors import ErrorValidacion, NoEncontrado, Prohibido, obtener_o_error
from core.models import Cliente, Mecanico
from core.roles import PERSONAL, ADMIN_MECANICO_JEFE, ADMIN_RECEPCIONISTA
from solicitudes import services as solicitudes_services
from solicitudes.serializers import solicitud_a_dict

from . import services
from .forms import AutoForm
from .models import Auto, EstadoAuto, Reparacion
from .serializers import auto_a_dict, reparacion_a_dict, historial_a_dict
from .validators import normalizar_patente

# claves JSON → campos del formulario
CAMPOS_AUTO = {
    "licensePlate": "patente",
    "brand": "marca",
    "model": "modelo",
    "year": "anio",
    "kms": "kms",
    "chassis": "chasis",
    "description": "descripcion",
    "priority": "prioridad",
}


def _autos():
    return Auto.objects.select_related("cliente__user", "mecanico__user")


def _puede_ver_auto(user, auto):
    return tiene_rol(user, *PERSONAL) or es_cliente_duenio(user, auto.cliente_id)


# ---------------- Autos ----------------

@api_view("GET", "POST")
def autos(request):
    if request.method == "GET":
        exigir_rol(request.user, *ADMIN_RECEPCIONISTA)
        return ok([auto_a_dict(a) for a in _autos().order_by("-creado_en")])

    exigir_rol(request.user, "admin", "recepcionista", "cliente")
    data = leer_json(request)
    cliente = obtener_o_error(Cliente, "Cliente no encontrado", pk=entero(data, "clientId"))
    form = AutoForm({campo: data.get(clave) for clave, campo in CAMPOS_AUTO.items()})
    if not form.is_valid():
        raise ErrorValidacion("Datos de entrada inválidos", datos=form.errors.get_json_data())
    auto = services.registrar_auto(request.user, cliente, **form.cleaned_data)
    return ok(auto_a_dict(auto), "Auto creado exitosamente", status=201)


@api_view("GET", "PUT", "DELETE")
def auto_detalle(request, auto_id):
    auto = obtener_o_error(_autos(), "Auto no encontrado", pk=auto_id)
    if request.method == "PUT":
        return _actualizar_auto(request, auto)
    if request.method == "DELETE":
        services.eliminar_auto(request.user, auto)
        return ok(None, "Auto eliminado")
    if not _puede_ver_auto(request.user, auto):
        raise Prohibido("Acceso denegado. No tienes permiso para ver este auto.")
    data = auto_a_dict(auto, con_reparaciones=True)
    data["history"] = [historial_a_dict(h) for h in auto.historial.order_by("inicio", "id")]
    return ok(data)


def _actualizar_auto(request, auto):
    exigir_rol(request.user, *ADMIN_RECEPCIONISTA)
    data = leer_json(request)
    enviados = {campo: data[clave] for clave, campo in CAMPOS_AUTO.items() if clave in data}
    if not enviados:
        raise ErrorValidacion("No hay campos para actualizar")
    # el formulario valida el registro completo con los cambios aplicados
    actuales = {campo: getattr(auto, campo) for campo in AutoForm.Meta.fields}
    form = AutoForm({**actuales, **enviados}, instance=auto)
    if not form.is_valid():
        raise ErrorValidacion("Datos de entrada inválidos", datos=form.errors.get_json_data())
    cambios = {campo: form.cleaned_data[campo] for campo in enviados}
    services.actualizar_auto(request.user, auto, **cambios)
    return ok(auto_a_dict(auto), "Auto actualizado exitosamente")


@api_view("GET")
@require_roles(*PERSONAL)
def auto_por_patente(request, patente):
    auto = _autos().filter(patente=normalizar_patente(patente)).first()
    if auto is None:
        raise NoEncontrado("Patente inexistente")
    return ok(auto_a_dict(auto))


@api_view("GET")
def autos_de_cliente(request, cliente_id):
    if not (tiene_rol(request.user, *PERSONAL) or es_cliente_duenio(request.user, cliente_id)):
        raise Prohibido("Acceso denegado. No puedes ver autos de otros clientes.")
    qs = _autos().filter(cliente_id=cliente_id).order_by("-creado_en")
    return ok([auto_a_dict(a) for a in qs])


# ---------------- Estados del auto ----------------

@api_view("GET", login=False)
def estados(request):
    return ok([{"id": valor, "name": nombre} for valor, nombre in EstadoAuto.choices])


@api_view("POST")
@require_roles(*ADMIN_MECANICO_JEFE)
def transicion(request):
    data = leer_json(request)
    auto = obtener_o_error(_autos(), "Auto no encontrado", pk=entero(data, "carId"))
    estado = services.validar_estado(data.get("newStatusId"))
    services.transicion_manual(auto, request.user, estado, descripcion=texto(data, "description", requerido=False))
    return ok(auto_a_dict(auto), f"Estado cambiado a {auto.get_estado_display()}")


@api_view("POST")
def aceptar_presupuesto(request):
    data = leer_json(request)
    auto = obtener_o_error(_autos(), "Auto no encontrado", pk=entero(data, "carId"))
    solicitud = solicitudes_services.aceptar_presupuesto(auto, request.user)
    return ok(
        {"car": auto_a_dict(auto), "serviceRequest": solicitud_a_dict(solicitud)},
        "Presupuesto aceptado, auto en reparación",
    )


@api_view("POST")
def rechazar_presupuesto(request):
    data = leer_json(request)
    auto = obtener_o_error(_autos(), "Auto no encontrado", pk=entero(data, "carId"))
    solicitud = solicitudes_services.rechazar_presupuesto(auto, request.user)
    return ok(
        {"car": auto_a_dict(auto), "serviceRequest": solicitud_a_dict(solicitud)},
        "Presupuesto rechazado, auto vuelve a entrada",
    )


@api_view("POST")
@require_roles(*ADMIN_MECANICO_JEFE)
def finalizar_reparacion(request):
    data = leer_json(request)
    auto = obtener_o_error(_autos(), "Auto no encontrado", pk=entero(data, "carId"))
    reparacion = services.finalizar_reparacion(
        auto,
        request.user,
        descripcion=texto(data, "finalDescription"),
        costo=decimal_no_negativo(data, "finalCost"),
        garantia_dias=entero(data, "warranty", requerido=False, minimo=0),
    )
    return ok({"car": auto_a_dict(auto), "repair": reparacion_a_dict(reparacion, con_auto=False)},
              "Reparación finalizada")


@api_view("POST")
@require_roles(*ADMIN_RECEPCIONISTA)
def entregar_auto(request):
    data = leer_json(request)
    auto = obtener_o_error(_autos(), "Auto no encontrado", pk=entero(data, "carId"))
    services.entregar_auto(auto, request.user)
    return ok(auto_a_dict(auto), "Auto entregado exitosamente")


# ---------------- Reparaciones ----------------

def _reparaciones():
    return Reparacion.objects.select_related("auto__cliente__user", "auto__mecanico__user", "mecanico__user")


def _puede_ver_reparacion(user, rep):
    if tiene_rol(user, "admin", "jefe"):
        return True
    if tiene_rol(user, "mecanico") and mecanico_id(user) == rep.mecanico_id:
        return True
    return es_cliente_duenio(user, rep.auto.cliente_id)


@api_view("GET", "POST")
def reparaciones(request):
    if request.method == "POST":
        return _crear_reparacion(request)
    return _listar_reparaciones(request)


def _crear_reparacion(request):
    exigir_rol(request.user, *ADMIN_MECANICO_JEFE)
    data = leer_json(request)
    auto = obtener_o_error(_autos(), "Auto no encontrado", pk=entero(data, "carId"))
    mecanico = obtener_o_error(Mecanico, "Mecánico no encontrado", pk=entero(data, "mechanicId"))
    rep = services.crear_reparacion(
        auto,
        request.user,
        mecanico,
        descripcion=texto(data, "description"),
        costo=decimal_no_negativo(data, "cost"),
        garantia_dias=entero(data, "warranty", requerido=False, minimo=0),
    )
    return ok(reparacion_a_dict(rep), "Reparación creada exitosamente", status=201)


@require_roles(*ADMIN_MECANICO_JEFE)
@cache_get(NAMESPACE_REPARACIONES)
def _listar_reparaciones(request):
    qs = _reparaciones()
    buscar = (request.GET.get("search") or "").strip()
    if buscar:
        from django.db.models import Q
        qs = qs.filter(
            Q(auto__patente__icontains=buscar)
            | Q(descripcion__icontains=buscar)
            | Q(auto__cliente__user__first_name__icontains=buscar)
            | Q(auto__cliente__user__last_name__icontains=buscar)
            | Q(mecanico__user__first_name__icontains=buscar)
            | Q(mecanico__user__last_name__icontains=buscar)
        )
    return ok([reparacion_a_dict(r) for r in qs])


@api_view("GET", "PUT", "DELETE")
def reparacion_detalle(request, reparacion_id):
    rep = obtener_o_error(_reparaciones(), "Reparación no encontrada", pk=reparacion_id)
    if request.method == "PUT":
        data = leer_json(request)
        rep = services.actualizar_reparacion(
            request.user,
            rep,
            descripcion=texto(data, "description") if "description" in data else None,
            costo=decimal_no_negativo(data, "cost", requerido=False),
            garantia_dias=entero(data, "warranty", requerido=False, minimo=0),
        )
        return ok(reparacion_a_dict(rep), "Reparación actualizada exitosamente")
    if request.method == "DELETE":
        services.eliminar_reparacion(request.user, rep)
        return ok(None, "Reparación eliminada")
    if not _puede_ver_reparacion(request.user, rep):
        raise Prohibido("Acceso denegado. No tienes permiso para ver esta reparación.")
    data = reparacion_a_dict(rep)
    data["payments"] = [
        {"id": p.id, "amount": p.monto, "status": p.estado, "createdAt": p.creado_en}
        for p in rep.pagos.order_by("-creado_en")
    ]
    return ok(data)


@api_view("GET")
@cache_get(NAMESPACE_REPARACIONES)
def reparaciones_de_auto(request, auto_id):
    auto = obtener_o_error(Auto, "Auto no encontrado", pk=auto_id)
    if not _puede_ver_auto(request.user, auto):
        raise Prohibido("Acceso denegado. No tienes permiso para ver este auto.")
    return ok([reparacion_a_dict(r) for r in _reparaciones().filter(auto=auto)])


@api_view("GET")
def reparaciones_de_mecanico(request, mecanico_id_url):
    mecanico = obtener_o_error(Mecanico, "Mecánico no encontrado", pk=mecanico_id_url)
    if not (tiene_rol(request.user, "admin", "jefe") or mecanico_id(request.user) == mecanico.id):
        raise Prohibido("Acceso denegado. No puedes ver reparaciones de otros mecánicos.")
    return ok([reparacion_a_dict(r) for r in _reparaciones().filter(mecanico=mecanico)])
