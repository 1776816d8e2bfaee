from django.contrib import admin
from .models import SolicitudServicio


@admin.register(SolicitudServicio)
class SolicitudAdmin(admin.ModelAdmin):
    list_display = ("id", "auto", "cliente", "jefe_asignado", "mecanico_asignado", "estado", "creado_en")
    list_filter = ("estado",)
    search_fields = ("auto__patente", "descripcion")
    raw_id_fields = ("auto", "cliente", "reparacion")
