from django.db.models.signals import post_save
from django.dispatch import receiver
from django.contrib.auth.models import User
from django.contrib.auth.signals import user_logged_in, user_logged_out
from django.utils import timezone

from .models import Perfil
from .services import auditar


@receiver(post_save, sender=User, dispatch_uid="core_ensure_profile")
def ensure_profile(sender, instance, created, **kwargs):
    # Asegura que todo usuario tenga Perfil (evita 403 "fantasmas")
    if created:
        Perfil.objects.get_or_create(user=instance)


@receiver(user_logged_in, dispatch_uid="core_on_login")
def _on_login(sender, request, user, **kwargs):
    from notificaciones.cola import encolar
    from notificaciones.models import TipoTrabajo

    auditar("AUTH", "LOGIN", user=user, object_repr=user.username)
    if user.email:
        encolar(TipoTrabajo.REGISTRO_SESION, {
            "email": user.email,
            "name": user.get_full_name() or user.username,
            "loginDateTime": timezone.localtime().strftime("%d/%m/%Y %H:%M"),
        })


@receiver(user_logged_out, dispatch_uid="core_on_logout")
def _on_logout(sender, request, user, **kwargs):
    if user and getattr(user, "is_authenticated", False):
        auditar("AUTH", "LOGOUT", user=user, object_repr=user.username)
