import logging

from django.core.serializers.json import DjangoJSONEncoder
import json

from .models import TrabajoEmail, TipoTrabajo

logger = logging.getLogger(__name__)


def encolar(tipo: str, payload: dict) -> TrabajoEmail:
    """Encola un trabajo tipado. Entrega al menos una vez, la consume el worker."""
    if tipo not in TipoTrabajo.values:
        raise ValueError(f"Tipo de trabajo de email desconocido: {tipo}")
    # normaliza Decimal/fechas a tipos JSON
    payload = json.loads(json.dumps(payload or {}, cls=DjangoJSONEncoder))
    trabajo = TrabajoEmail.objects.create(tipo=tipo, payload=payload)
    logger.info("Trabajo de email encolado: %s #%s", tipo, trabajo.pk)
    return trabajo
