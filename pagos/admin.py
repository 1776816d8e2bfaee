from django.contrib import admin
from .models import Pago


@admin.register(Pago)
class PagoAdmin(admin.ModelAdmin):
    list_display = ("id", "reparacion", "cliente", "monto", "metodo", "estado", "creado_en")
    list_filter = ("estado", "metodo")
    search_fields = ("referencia_externa",)
