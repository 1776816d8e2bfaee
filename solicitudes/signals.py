# solicitudes/signals.py
import json
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from core.models import AuditLog
from .models import SolicitudServicio


def _usuario(instance):
    # los servicios dejan el actor en la instancia antes de guardar
    u = getattr(instance, "_actor", None)
    return u if u is not None and getattr(u, "is_authenticated", False) else None


def _solicitud_repr(s: SolicitudServicio):
    pat = getattr(getattr(s, "auto", None), "patente", "") or ""
    return f"Solicitud #{s.pk} · {pat}".strip(" ·")


@receiver(post_save, sender=SolicitudServicio, dispatch_uid="solicitud_post_save", weak=False)
def solicitud_guardada(sender, instance: SolicitudServicio, created, **kwargs):
    extra = {
        "estado": instance.estado,
        "estado_label": instance.get_estado_display(),
        "jefe": instance.jefe_asignado_id,
        "mecanico": instance.mecanico_asignado_id,
        "reparacion": instance.reparacion_id,
    }
    AuditLog.objects.create(
        app="SOLICITUD",
        action=("CREATE" if created else "UPDATE"),
        user=_usuario(instance),
        object_repr=_solicitud_repr(instance)[:140],
        extra=json.dumps(extra, ensure_ascii=False),
    )


@receiver(post_delete, sender=SolicitudServicio, dispatch_uid="solicitud_post_delete", weak=False)
def solicitud_eliminada(sender, instance: SolicitudServicio, **kwargs):
    AuditLog.objects.create(
        app="SOLICITUD",
        action="DELETE",
        user=_usuario(instance),
        object_repr=_solicitud_repr(instance)[:140],
        extra=json.dumps({"detail": "Solicitud eliminada"}, ensure_ascii=False),
    )
