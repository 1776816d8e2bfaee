import logging

from django.contrib.auth.models import User
from django.contrib.auth.password_validation import validate_password
from django.contrib.auth.tokens import default_token_generator
from django.core.exceptions import ValidationError
from django.utils.encoding import force_bytes, force_str
from django.utils.http import urlsafe_base64_decode, urlsafe_base64_encode

from notificaciones.cola import encolar
from notificaciones.models import TipoTrabajo
from .errors import ErrorValidacion
from .models import Notificacion, AuditLog, Perfil, Cliente, Jefe, Mecanico
from .roles import Rol

logger = logging.getLogger(__name__)


def notificar(destinatario: User | None, titulo: str, mensaje: str = "", url: str = ""):
    return Notificacion.objects.create(
        destinatario=destinatario,
        titulo=titulo,
        mensaje=mensaje,
        url=url
    )


def auditar(app: str, action: str, user: User | None = None, object_repr: str = "", extra: str = ""):
    return AuditLog.objects.create(
        app=app,
        action=action,
        user=user if user is not None and getattr(user, "is_authenticated", False) else None,
        object_repr=object_repr[:140],
        extra=extra,
    )


def asignar_rol(user: User, rol: str, jefe=None):
    """Fija el rol del usuario y crea el perfil de actor que le corresponde."""
    perfil, _ = Perfil.objects.get_or_create(user=user)
    perfil.rol = rol
    perfil.save()

    if rol == Rol.CLIENTE:
        return Cliente.objects.get_or_create(user=user)[0]
    if rol == Rol.JEFE:
        return Jefe.objects.get_or_create(user=user)[0]
    if rol == Rol.MECANICO:
        mec, _ = Mecanico.objects.get_or_create(user=user)
        if jefe is not None and mec.jefe_id != jefe.pk:
            mec.jefe = jefe
            mec.save(update_fields=["jefe"])
        return mec
    return perfil


# -------- restablecimiento de contraseña --------

def solicitar_restablecimiento(email: str):
    """Encola el enlace de restablecimiento si el email es de un usuario activo. No revela si existe."""
    user = User.objects.filter(email__iexact=email.strip(), is_active=True).order_by("id").first()
    if user is None:
        logger.info("Restablecimiento pedido para un email no registrado")
        return None
    token = default_token_generator.make_token(user)
    encolar(TipoTrabajo.RESTABLECER_CLAVE, {
        "email": user.email,
        "name": user.get_full_name() or user.username,
        "uid": urlsafe_base64_encode(force_bytes(user.pk)),
        "token": token,
    })
    auditar("AUTH", "PASSWORD_RESET_REQUEST", user, object_repr=user.username)
    return token


def restablecer_clave(uid: str, token: str, nueva: str):
    """El token expira con PASSWORD_RESET_TIMEOUT y deja de valer al cambiar la contraseña."""
    try:
        user = User.objects.get(pk=force_str(urlsafe_base64_decode(uid)), is_active=True)
    except (TypeError, ValueError, OverflowError, User.DoesNotExist):
        user = None
    if user is None or not default_token_generator.check_token(user, token):
        raise ErrorValidacion("Token inválido o expirado", datos={"token": ["Inválido o expirado"]})
    try:
        validate_password(nueva, user)
    except ValidationError as e:
        raise ErrorValidacion("La contraseña no es válida", datos={"newPassword": list(e.messages)})
    user.set_password(nueva)
    user.save(update_fields=["password"])
    auditar("AUTH", "PASSWORD_RESET", user, object_repr=user.username)
    return user
