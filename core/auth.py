from functools import wraps

from .errors import NoAutenticado, Prohibido
from .roles import normalizar_rol


def rol_de(user):
    """Rol normalizado del usuario, o "" si no tiene uno resoluble."""
    if user is None or not getattr(user, "is_authenticated", False):
        return ""
    perfil = getattr(user, "perfil", None)
    return normalizar_rol(getattr(perfil, "rol", None))


def tiene_rol(user, *roles):
    rol = rol_de(user)
    if not rol:
        return False
    return rol in {normalizar_rol(r) for r in roles}


def exigir_rol(user, *roles, mensaje=None):
    """
    Compuerta de autorización: puro, sin acceso a la base de datos más allá
    del perfil ya cargado en el usuario.
    """
    if not tiene_rol(user, *roles):
        raise Prohibido(mensaje)


def es_admin(user):
    return tiene_rol(user, "admin")


def cliente_id(user):
    c = getattr(user, "cliente", None) if user is not None else None
    return getattr(c, "id", None)


def mecanico_id(user):
    m = getattr(user, "mecanico", None) if user is not None else None
    return getattr(m, "id", None)


def jefe_id(user):
    j = getattr(user, "jefe", None) if user is not None else None
    return getattr(j, "id", None)


def es_cliente_duenio(user, cliente_duenio_id):
    return tiene_rol(user, "cliente") and cliente_duenio_id is not None and cliente_id(user) == cliente_duenio_id


def require_roles(*roles):
    """Decorador de vista: exige sesión y uno de los roles indicados."""
    def decorator(viewfunc):
        @wraps(viewfunc)
        def _wrapped(request, *args, **kwargs):
            if not request.user.is_authenticated:
                raise NoAutenticado()
            exigir_rol(request.user, *roles)
            return viewfunc(request, *args, **kwargs)
        return _wrapped
    return decorator


# Atajos
require_admin = require_roles("admin")
