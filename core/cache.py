"""
Cache de lectura para listados JSON, con invalidación por namespace.

Cada namespace tiene un número de versión guardado en el propio cache; la
clave de cada respuesta incluye esa versión, así que invalidar es subir la
versión y las claves viejas mueren por TTL.
"""
import hashlib
import json
import logging
from functools import wraps

from django.conf import settings
from django.core.cache import cache
from django.http import JsonResponse

logger = logging.getLogger(__name__)

NAMESPACE_REPARACIONES = "reparaciones"


def _clave_version(namespace):
    return f"cache:{namespace}:version"


def version_namespace(namespace):
    return cache.get_or_set(_clave_version(namespace), 1, timeout=None)


def identidad(user):
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    perfil = getattr(user, "perfil", None)
    return {
        "role": getattr(perfil, "rol", None),
        "userId": user.id,
        "mechId": getattr(getattr(user, "mecanico", None), "id", None),
        "clientId": getattr(getattr(user, "cliente", None), "id", None),
    }


def clave_cache(request, namespace=NAMESPACE_REPARACIONES):
    ident = {
        "path": request.path,
        "query": sorted(request.GET.lists()),
        "user": identidad(request.user),
    }
    raw = json.dumps(ident, sort_keys=True, default=str)
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return f"cache:{namespace}:v{version_namespace(namespace)}:{digest}"


def invalidar_namespace(namespace=NAMESPACE_REPARACIONES):
    key = _clave_version(namespace)
    try:
        try:
            cache.incr(key)
        except ValueError:
            # la versión expiró o nunca existió
            cache.set(key, 2, timeout=None)
    except Exception:
        logger.warning("No se pudo invalidar el namespace de cache %s", namespace, exc_info=True)


def cache_get(namespace=NAMESPACE_REPARACIONES, ttl=None):
    """Decorador de vista: sirve desde cache las respuestas JSON 200."""
    def decorator(viewfunc):
        @wraps(viewfunc)
        def _wrapped(request, *args, **kwargs):
            timeout = ttl if ttl is not None else settings.CACHE_TTL_SECONDS
            try:
                key = clave_cache(request, namespace)
                cached = cache.get(key)
            except Exception:
                logger.warning("Cache no disponible; se sirve sin cache", exc_info=True)
                return viewfunc(request, *args, **kwargs)

            if cached is not None:
                return JsonResponse(cached, safe=False)

            response = viewfunc(request, *args, **kwargs)
            if isinstance(response, JsonResponse) and response.status_code == 200:
                try:
                    cache.set(key, json.loads(response.content), timeout)
                except Exception:
                    logger.warning("[cache] set falló para %s", key, exc_info=True)
            return response
        return _wrapped
    return decorator
