# config/middlewares.py
import logging

from django.utils.deprecation import MiddlewareMixin

from core.api import error_response, internal_error_response
from core.errors import ErrorFlujo

logger = logging.getLogger(__name__)


class ApiErrorMiddleware(MiddlewareMixin):
    """Errores que escapan de vistas /api/ sin api_view → respuesta JSON estructurada."""

    def process_exception(self, request, exception):
        if not request.path.startswith("/api/"):
            return None
        if isinstance(exception, ErrorFlujo):
            return error_response(exception)
        logger.exception("Error no controlado en %s %s", request.method, request.path)
        return internal_error_response()

    def process_response(self, request, response):
        # respuestas de API nunca se guardan en el navegador
        if request.path.startswith("/api/"):
            response["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
            response["Pragma"] = "no-cache"
        return response
