"""
Despachador de notificaciones de cambio de estado.

Contrato: se despacha después de que la transición se confirma
(transaction.on_commit), a lo sumo una vez y sin reintentos. Cualquier
falla se registra y se descarta; nunca llega a quien disparó la transición.
"""
import logging

from django.conf import settings
from django.db import transaction

from core.services import notificar
from .cola import encolar
from .models import TipoTrabajo

logger = logging.getLogger(__name__)


def datos_auto(auto, estado_anterior=None):
    user = getattr(getattr(auto, "cliente", None), "user", None)
    datos = {
        "carId": auto.pk,
        "licensePlate": auto.patente,
        "brand": auto.marca,
        "model": auto.modelo,
        "status": auto.estado,
        "statusName": auto.get_estado_display(),
        "email": getattr(user, "email", "") or "",
        "name": (user.get_full_name() or user.username) if user is not None else "",
    }
    if estado_anterior is not None:
        datos["previousStatus"] = int(estado_anterior)
        etiquetas = dict(auto._meta.get_field("estado").choices)
        datos["previousStatusName"] = etiquetas.get(int(estado_anterior), str(estado_anterior))
    return datos


class Notificador:
    """
    Hook de notificación invocado después de cada mutación de estado de un
    auto. `diferido=False` ejecuta en línea (útil fuera de una transacción).
    """

    def __init__(self, diferido=True):
        self.diferido = diferido

    def cambio_estado(self, auto, estado_anterior=None):
        self._despachar(self._enviar_cambio_estado, auto, estado_anterior)

    def presupuesto(self, auto, presupuesto):
        self._despachar(self._enviar_presupuesto, auto, dict(presupuesto or {}))

    # -------- internos --------
    def _despachar(self, fn, auto, extra):
        def _seguro():
            try:
                fn(auto, extra)
            except Exception:
                logger.exception("Falló la notificación del auto #%s", getattr(auto, "pk", None))

        try:
            if self.diferido:
                transaction.on_commit(_seguro)
            else:
                _seguro()
        except Exception:
            logger.exception("No se pudo programar la notificación del auto #%s", getattr(auto, "pk", None))

    def _enviar_cambio_estado(self, auto, estado_anterior):
        datos = datos_auto(auto, estado_anterior)
        user = getattr(getattr(auto, "cliente", None), "user", None)
        notificar(
            destinatario=user,
            titulo=f"{datos['licensePlate']}: {datos['statusName']}",
            mensaje=(
                f"Cambio de estado: {datos['previousStatusName']} → {datos['statusName']}."
                if "previousStatusName" in datos
                else f"Estado actual: {datos['statusName']}."
            ),
            url=f"/cars/{auto.pk}/",
        )
        if datos["email"]:
            encolar(TipoTrabajo.CAMBIO_ESTADO, {"carData": datos})
        else:
            logger.warning("Auto %s sin email de cliente; se omite el email", datos["licensePlate"])

    def _enviar_presupuesto(self, auto, presupuesto):
        datos = datos_auto(auto)
        datos["budget"] = {
            "description": presupuesto.get("description", ""),
            "cost": presupuesto.get("cost"),
        }
        datos["acceptUrl"] = f"{settings.FRONTEND_URL}/accept-budget?carId={auto.pk}"
        datos["rejectUrl"] = f"{settings.FRONTEND_URL}/reject-budget?carId={auto.pk}"
        user = getattr(getattr(auto, "cliente", None), "user", None)
        notificar(
            destinatario=user,
            titulo=f"Presupuesto para {datos['licensePlate']}",
            mensaje=f"{datos['budget']['description']} · ${datos['budget']['cost']}",
            url=f"/cars/{auto.pk}/",
        )
        if datos["email"]:
            encolar(TipoTrabajo.PRESUPUESTO, {"carData": datos, "budgetData": datos["budget"]})
        else:
            logger.warning("Auto %s sin email de cliente; se omite el presupuesto", datos["licensePlate"])


def notificador_por_defecto():
    return Notificador()
