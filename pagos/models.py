from django.db import models
from django.db.models import Q
from django.core.validators import MinValueValidator
from decimal import Decimal

from core.models import Cliente
from taller.models import Reparacion


class EstadoPago(models.TextChoices):
    PENDIENTE = "PENDIENTE", "Pendiente"
    PAGADO = "PAGADO", "Pagado"
    CANCELADO = "CANCELADO", "Cancelado"


class MetodoPago(models.TextChoices):
    EFECTIVO = "EFECTIVO", "Efectivo"
    TARJETA = "TARJETA", "Tarjeta"
    TRANSFERENCIA = "TRANSFERENCIA", "Transferencia"
    MERCADOPAGO = "MERCADOPAGO", "MercadoPago"
    MERCADOPAGO_SIMULATION = "MERCADOPAGO_SIMULATION", "MercadoPago (simulación)"


class Pago(models.Model):
    reparacion = models.ForeignKey(Reparacion, on_delete=models.PROTECT, related_name="pagos")
    cliente = models.ForeignKey(Cliente, on_delete=models.PROTECT, related_name="pagos")
    monto = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal("0"))])
    metodo = models.CharField(max_length=32, choices=MetodoPago.choices, default=MetodoPago.MERCADOPAGO_SIMULATION)
    estado = models.CharField(max_length=16, choices=EstadoPago.choices, default=EstadoPago.PENDIENTE)
    referencia_externa = models.CharField(max_length=120, blank=True, default="")
    creado_en = models.DateTimeField(auto_now_add=True)
    actualizado_en = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-creado_en", "-id"]
        constraints = [
            # a lo sumo un pago pendiente por reparación
            models.UniqueConstraint(
                fields=["reparacion"],
                condition=Q(estado="PENDIENTE"),
                name="uniq_pago_pendiente_por_reparacion",
            ),
            models.CheckConstraint(condition=Q(monto__gte=0), name="pago_monto_no_negativo"),
        ]
        indexes = [
            models.Index(fields=["reparacion", "estado"]),
            models.Index(fields=["referencia_externa"]),
        ]
        verbose_name = "Pago"
        verbose_name_plural = "Pagos"

    def __str__(self):
        return f"Pago #{self.pk} · {self.get_estado_display()} · ${self.monto}"
