"""
Taxonomía de errores del flujo de trabajo.

Los servicios lanzan estas excepciones antes de mutar nada; la capa API
(`core.api.api_view`) las traduce a respuestas JSON estructuradas.
"""


class ErrorFlujo(Exception):
    tipo = "error"
    status = 400
    mensaje_default = "Operación inválida"

    def __init__(self, mensaje=None, datos=None):
        self.mensaje = mensaje or self.mensaje_default
        self.datos = datos
        super().__init__(self.mensaje)

    def as_dict(self):
        payload = {"success": False, "error": self.tipo, "message": self.mensaje}
        if self.datos is not None:
            payload["data"] = self.datos
        return payload


class NoAutenticado(ErrorFlujo):
    tipo = "unauthenticated"
    status = 401
    mensaje_default = "Usuario no autenticado"


class NoEncontrado(ErrorFlujo):
    tipo = "not_found"
    status = 404
    mensaje_default = "Recurso no encontrado"


class EstadoInvalido(ErrorFlujo):
    tipo = "invalid_state"
    status = 409
    mensaje_default = "Transición inválida para el estado actual"


class Prohibido(ErrorFlujo):
    tipo = "forbidden"
    status = 403
    mensaje_default = "Acceso denegado. Rol insuficiente."


class PagoPendienteDuplicado(ErrorFlujo):
    tipo = "duplicate_pending_payment"
    status = 409
    mensaje_default = (
        "Ya existe un pago pendiente para esta reparación. Complete o cancele "
        "el pago existente antes de crear uno nuevo."
    )


class ErrorValidacion(ErrorFlujo):
    tipo = "validation_error"
    status = 400
    mensaje_default = "Datos inválidos"


class SinJefeDisponible(ErrorFlujo):
    tipo = "no_boss_available"
    status = 409
    mensaje_default = "No hay jefes disponibles"


def obtener_o_error(modelo, mensaje=None, **filtros):
    """Como get_object_or_404, pero con la señal NoEncontrado del dominio."""
    qs = modelo._default_manager if hasattr(modelo, "_default_manager") else modelo
    try:
        return qs.get(**filtros)
    except (ValueError, TypeError):
        raise ErrorValidacion(f"Identificador inválido para {_nombre(modelo)}")
    except qs.model.DoesNotExist:
        raise NoEncontrado(mensaje or f"{_nombre(modelo)} no encontrado")


def _nombre(modelo):
    model = getattr(modelo, "model", modelo)
    return str(model._meta.verbose_name).capitalize()
