import logging

from django.db import transaction
from django.utils import timezone

from .emails import enviar_trabajo
from .models import TrabajoEmail, EstadoTrabajo

logger = logging.getLogger(__name__)


def reclamar_lote(limite=5):
    """Marca como PROCESANDO hasta `limite` trabajos pendientes y los devuelve."""
    with transaction.atomic():
        ids = list(
            TrabajoEmail.objects.select_for_update(skip_locked=True)
            .filter(estado=EstadoTrabajo.PENDIENTE)
            .order_by("creado_en", "id")
            .values_list("id", flat=True)[:limite]
        )
        TrabajoEmail.objects.filter(id__in=ids).update(estado=EstadoTrabajo.PROCESANDO)
    return list(TrabajoEmail.objects.filter(id__in=ids).order_by("creado_en", "id"))


def procesar_trabajo(trabajo):
    trabajo.intentos += 1
    try:
        enviar_trabajo(trabajo)
    except Exception as e:
        # como un nack sin requeue: queda FALLIDO
        logger.error("[worker] trabajo de email #%s falló: %s", trabajo.pk, e)
        trabajo.estado = EstadoTrabajo.FALLIDO
        trabajo.error = str(e)[:2000]
    else:
        trabajo.estado = EstadoTrabajo.ENVIADO
        trabajo.error = ""
    trabajo.procesado_en = timezone.now()
    trabajo.save(update_fields=["estado", "error", "intentos", "procesado_en"])
    return trabajo.estado == EstadoTrabajo.ENVIADO


def procesar_pendientes(limite=5):
    """Procesa un lote; devuelve (enviados, fallidos)."""
    enviados = fallidos = 0
    for trabajo in reclamar_lote(limite):
        if procesar_trabajo(trabajo):
            enviados += 1
        else:
            fallidos += 1
    return enviados, fallidos
