from django.db import models
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db.models import Q
from decimal import Decimal

from core.models import Cliente, Mecanico


class EstadoAuto(models.IntegerChoices):
    # Los códigos y nombres son contrato externo (badges, claves de cache)
    ENTRADA = 1, "Entrada"
    PENDIENTE = 2, "Pendiente"
    EN_REVISION = 3, "En Revisión"
    RECHAZADO = 4, "Rechazado"
    EN_REPARACION = 5, "En Reparación"
    FINALIZADO = 6, "Finalizado"
    ENTREGADO = 7, "Entregado"
    CANCELADO = 8, "Cancelado"


class PrioridadAuto(models.IntegerChoices):
    BAJA = 1, "Baja"
    MEDIA = 2, "Media"
    ALTA = 3, "Alta"
    CRITICA = 4, "Crítica"


class Auto(models.Model):
    cliente = models.ForeignKey(Cliente, on_delete=models.PROTECT, related_name="autos")
    mecanico = models.ForeignKey(Mecanico, null=True, blank=True, on_delete=models.SET_NULL, related_name="autos")
    patente = models.CharField(max_length=12, unique=True)
    marca = models.CharField(max_length=80)
    modelo = models.CharField(max_length=80)
    anio = models.PositiveSmallIntegerField(null=True, blank=True)
    kms = models.PositiveIntegerField(default=0)
    chasis = models.CharField(max_length=17)
    descripcion = models.TextField(blank=True, default="")
    estado = models.PositiveSmallIntegerField(choices=EstadoAuto.choices, default=EstadoAuto.ENTRADA)
    prioridad = models.IntegerField(choices=PrioridadAuto.choices, default=PrioridadAuto.MEDIA)
    creado_en = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=Q(estado__gte=EstadoAuto.ENTRADA) & Q(estado__lte=EstadoAuto.CANCELADO),
                name="auto_estado_valido",
            ),
        ]
        indexes = [
            models.Index(fields=["patente"]),
            models.Index(fields=["estado"]),
            models.Index(fields=["prioridad"]),
        ]
        verbose_name = "Auto"
        verbose_name_plural = "Autos"

    def __str__(self):
        return self.patente.upper()


class HistorialEstadoAuto(models.Model):
    auto = models.ForeignKey(Auto, on_delete=models.CASCADE, related_name="historial")
    estado = models.PositiveSmallIntegerField(choices=EstadoAuto.choices)
    disparador = models.CharField(max_length=40, blank=True)
    usuario = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL)
    inicio = models.DateTimeField(auto_now_add=True)
    fin = models.DateTimeField(null=True, blank=True)
    observaciones = models.TextField(blank=True)

    class Meta:
        indexes = [models.Index(fields=["auto", "estado", "inicio"])]
        verbose_name = "Historial de estado"
        verbose_name_plural = "Historial de estados"


class Reparacion(models.Model):
    auto = models.ForeignKey(Auto, on_delete=models.PROTECT, related_name="reparaciones")
    mecanico = models.ForeignKey(Mecanico, null=True, blank=True, on_delete=models.SET_NULL, related_name="reparaciones")
    descripcion = models.TextField()
    costo = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal("0"))])
    garantia_dias = models.PositiveIntegerField(default=90)
    creado_en = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-creado_en", "-id"]
        constraints = [
            models.CheckConstraint(condition=Q(costo__gte=0), name="reparacion_costo_no_negativo"),
        ]
        indexes = [models.Index(fields=["auto", "creado_en"])]
        verbose_name = "Reparación"
        verbose_name_plural = "Reparaciones"

    def __str__(self):
        return f"Reparación #{self.pk} · {self.auto}"
