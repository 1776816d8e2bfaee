import logging

from django.views.decorators.csrf import csrf_exempt

from core.api import api_view, leer_json, ok, entero, texto
from core.auth import cliente_id, tiene_rol
from core.errors import Prohibido, obtener_o_error
from taller.models import Reparacion

from . import services
from .models import Pago
from .serializers import pago_a_dict

logger = logging.getLogger(__name__)


@api_view("POST")
def crear_preferencia(request):
    data = leer_json(request)
    reparacion = obtener_o_error(
        Reparacion.objects.select_related("auto"), "Reparación no encontrada", pk=entero(data, "repairId")
    )
    cid = entero(data, "clientId", requerido=False)
    if tiene_rol(request.user, "cliente") and cid is not None and cid != cliente_id(request.user):
        raise Prohibido("Acceso denegado. No puedes ver pagos de otros clientes.")
    pago, preferencia = services.crear_preferencia(request.user, reparacion)
    return ok({"payment": pago_a_dict(pago), **preferencia}, "Preferencia de pago creada", status=201)


@api_view("GET")
def pendiente(request, reparacion_id):
    reparacion = obtener_o_error(
        Reparacion.objects.select_related("auto"), "Reparación no encontrada", pk=reparacion_id
    )
    pago, ventana = services.pago_pendiente(request.user, reparacion)
    if pago is None:
        return ok(None, "No hay pagos pendientes")
    return ok({"payment": pago_a_dict(pago), **ventana})


@api_view("POST")
def cancelar_pendiente(request, pago_id):
    pago = obtener_o_error(Pago, "Pago no encontrado", pk=pago_id)
    pago = services.cancelar_pago(request.user, pago)
    return ok(pago_a_dict(pago), "Pago cancelado exitosamente")


@api_view("POST")
def confirmar(request, pago_id):
    pago = obtener_o_error(Pago, "Pago no encontrado", pk=pago_id)
    data = leer_json(request)
    pago = services.confirmar_pago(request.user, pago, referencia=texto(data, "externalId", requerido=False))
    return ok(pago_a_dict(pago), "Pago confirmado")


@csrf_exempt
@api_view("POST", login=False)
def webhook(request):
    # solo se registra; la confianza en el proveedor queda fuera
    data = leer_json(request)
    tipo = data.get("type")
    if tipo == "payment":
        logger.info("Notificación de pago recibida: %s", (data.get("data") or {}).get("id"))
    else:
        logger.info("Webhook de pagos recibido: %s", tipo)
    return ok(None, "OK")
