import json
import logging
from decimal import Decimal, InvalidOperation
from functools import wraps

from django.http import Http404, JsonResponse

from .errors import ErrorFlujo, ErrorValidacion, NoAutenticado, NoEncontrado

logger = logging.getLogger(__name__)


def ok(data=None, message="", status=200):
    payload = {"success": True, "data": data}
    if message:
        payload["message"] = message
    return JsonResponse(payload, status=status)


def error_response(exc: ErrorFlujo):
    return JsonResponse(exc.as_dict(), status=exc.status)


def internal_error_response():
    return JsonResponse(
        {"success": False, "error": "internal_error", "message": "Error interno del servidor"},
        status=500,
    )


def api_view(*metodos, login=True):
    """
    Envuelve una vista JSON:
    - restringe métodos HTTP
    - exige sesión (salvo login=False)
    - traduce ErrorFlujo a respuestas estructuradas y oculta el resto
    """
    permitidos = {m.upper() for m in metodos} or {"GET"}

    def decorator(viewfunc):
        @wraps(viewfunc)
        def _wrapped(request, *args, **kwargs):
            if request.method not in permitidos:
                return JsonResponse(
                    {"success": False, "error": "method_not_allowed", "message": "Método no permitido"},
                    status=405,
                )
            try:
                if login and not request.user.is_authenticated:
                    raise NoAutenticado()
                return viewfunc(request, *args, **kwargs)
            except ErrorFlujo as e:
                return error_response(e)
            except Http404:
                return error_response(NoEncontrado())
            except Exception:
                logger.exception("Error inesperado en %s %s", request.method, request.path)
                return internal_error_response()
        return _wrapped
    return decorator


def leer_json(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ErrorValidacion("El cuerpo de la solicitud no es JSON válido")
    if not isinstance(data, dict):
        raise ErrorValidacion("El cuerpo de la solicitud debe ser un objeto JSON")
    return data


def entero(data, campo, requerido=True, minimo=1):
    valor = data.get(campo)
    if valor in (None, ""):
        if requerido:
            raise ErrorValidacion(f"{campo} es requerido", datos={campo: ["Requerido"]})
        return None
    if isinstance(valor, bool) or (isinstance(valor, float) and not valor.is_integer()):
        raise ErrorValidacion(f"{campo} debe ser un entero", datos={campo: ["Debe ser un entero"]})
    try:
        valor = int(valor)
    except (TypeError, ValueError, OverflowError):
        raise ErrorValidacion(f"{campo} debe ser un entero", datos={campo: ["Debe ser un entero"]})
    if minimo is not None and valor < minimo:
        raise ErrorValidacion(f"{campo} debe ser >= {minimo}", datos={campo: [f"Mínimo {minimo}"]})
    return valor


def decimal_no_negativo(data, campo, requerido=True, max_digits=12, decimal_places=2):
    valor = data.get(campo)
    if valor in (None, ""):
        if requerido:
            raise ErrorValidacion(f"{campo} es requerido", datos={campo: ["Requerido"]})
        return None
    if isinstance(valor, bool):
        raise ErrorValidacion(f"{campo} debe ser numérico", datos={campo: ["Debe ser numérico"]})
    try:
        valor = Decimal(str(valor))
    except (InvalidOperation, ValueError):
        raise ErrorValidacion(f"{campo} debe ser numérico", datos={campo: ["Debe ser numérico"]})
    if not valor.is_finite() or valor < 0:
        raise ErrorValidacion(f"{campo} debe ser >= 0", datos={campo: ["Debe ser >= 0"]})
    # mismo rango que la columna DecimalField(max_digits, decimal_places)
    tope = Decimal(10) ** (max_digits - decimal_places)
    try:
        valor = valor.quantize(Decimal(1).scaleb(-decimal_places))
    except InvalidOperation:
        valor = tope
    if valor >= tope:
        raise ErrorValidacion(f"{campo} fuera de rango", datos={campo: [f"Debe ser menor a {tope:.0f}"]})
    return valor


def texto(data, campo, requerido=True):
    valor = (data.get(campo) or "")
    valor = str(valor).strip()
    if requerido and not valor:
        raise ErrorValidacion(f"{campo} es requerido", datos={campo: ["Requerido"]})
    return valor
