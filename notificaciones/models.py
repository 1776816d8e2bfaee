from django.db import models


class TipoTrabajo(models.TextChoices):
    PRUEBA = "testEmail", "Email de prueba"
    REGISTRO_SESION = "registrationConfirmation", "Confirmación de sesión"
    BIENVENIDA = "welcomeEmail", "Bienvenida"
    RESTABLECER_CLAVE = "passwordReset", "Restablecer contraseña"
    CAMBIO_ESTADO = "carStateChange", "Cambio de estado del vehículo"
    PRESUPUESTO = "budgetEmail", "Presupuesto"


class EstadoTrabajo(models.TextChoices):
    PENDIENTE = "PENDIENTE", "Pendiente"
    PROCESANDO = "PROCESANDO", "Procesando"
    ENVIADO = "ENVIADO", "Enviado"
    FALLIDO = "FALLIDO", "Fallido"


class TrabajoEmail(models.Model):
    """Cola durable de emails: el núcleo encola, el worker consume."""
    tipo = models.CharField(max_length=40, choices=TipoTrabajo.choices)
    payload = models.JSONField(default=dict, blank=True)
    estado = models.CharField(max_length=12, choices=EstadoTrabajo.choices, default=EstadoTrabajo.PENDIENTE)
    intentos = models.PositiveIntegerField(default=0)
    error = models.TextField(blank=True, default="")
    creado_en = models.DateTimeField(auto_now_add=True)
    procesado_en = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["creado_en", "id"]
        indexes = [models.Index(fields=["estado", "creado_en"])]
        verbose_name = "Trabajo de email"
        verbose_name_plural = "Trabajos de email"

    def __str__(self):
        return f"{self.get_tipo_display()} #{self.pk} · {self.get_estado_display()}"
