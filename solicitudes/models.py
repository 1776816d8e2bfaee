from django.db import models
from django.db.models import Q

from core.models import Cliente, Jefe, Mecanico
from taller.models import Auto, Reparacion


class EstadoSolicitud(models.TextChoices):
    # Los códigos son contrato externo: no cambiarlos
    PENDIENTE = "PENDING", "Pendiente"
    ASIGNADA = "ASSIGNED", "Asignada"
    PRESUPUESTO_ENVIADO = "PRESUPUESTO_ENVIADO", "Presupuesto enviado"
    EN_REPARACION = "IN_REPAIR", "En reparación"
    RECHAZADA = "REJECTED", "Rechazada"
    COMPLETADA = "COMPLETED", "Completada"
    CANCELADA = "CANCELLED", "Cancelada"


ESTADOS_TERMINALES = frozenset({
    EstadoSolicitud.RECHAZADA,
    EstadoSolicitud.COMPLETADA,
    EstadoSolicitud.CANCELADA,
})
ESTADOS_VIVOS = frozenset(set(EstadoSolicitud.values) - ESTADOS_TERMINALES)


class SolicitudServicio(models.Model):
    auto = models.ForeignKey(Auto, on_delete=models.PROTECT, related_name="solicitudes")
    cliente = models.ForeignKey(Cliente, on_delete=models.PROTECT, related_name="solicitudes")
    mecanico_preferido = models.ForeignKey(
        Mecanico, null=True, blank=True, on_delete=models.SET_NULL, related_name="solicitudes_preferidas"
    )
    jefe_asignado = models.ForeignKey(
        Jefe, null=True, blank=True, on_delete=models.SET_NULL, related_name="solicitudes"
    )
    mecanico_asignado = models.ForeignKey(
        Mecanico, null=True, blank=True, on_delete=models.SET_NULL, related_name="solicitudes_asignadas"
    )
    descripcion = models.TextField()
    estado = models.CharField(max_length=24, choices=EstadoSolicitud.choices, default=EstadoSolicitud.PENDIENTE)
    presupuesto_descripcion = models.TextField(blank=True, default="")
    presupuesto_costo = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    reparacion = models.OneToOneField(
        Reparacion, null=True, blank=True, on_delete=models.SET_NULL, related_name="solicitud"
    )
    creado_en = models.DateTimeField(auto_now_add=True)
    actualizado_en = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-creado_en", "-id"]
        constraints = [
            # a lo sumo una solicitud viva por auto
            models.UniqueConstraint(
                fields=["auto"],
                condition=Q(estado__in=sorted(ESTADOS_VIVOS)),
                name="uniq_solicitud_viva_por_auto",
            ),
            models.CheckConstraint(
                condition=Q(presupuesto_costo__isnull=True) | Q(presupuesto_costo__gte=0),
                name="solicitud_presupuesto_no_negativo",
            ),
        ]
        indexes = [
            models.Index(fields=["estado"]),
            models.Index(fields=["auto", "estado"]),
        ]
        verbose_name = "Solicitud de servicio"
        verbose_name_plural = "Solicitudes de servicio"

    def __str__(self):
        return f"Solicitud #{self.pk} · {self.auto}"

    @property
    def es_terminal(self):
        return self.estado in ESTADOS_TERMINALES
