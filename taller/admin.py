from django.contrib import admin
from .models import Auto, HistorialEstadoAuto, Reparacion


@admin.register(Auto)
class AutoAdmin(admin.ModelAdmin):
    list_display = ("id", "patente", "marca", "modelo", "cliente", "estado", "prioridad")
    search_fields = ("patente", "marca", "modelo", "chasis")
    list_filter = ("estado", "prioridad")


@admin.register(HistorialEstadoAuto)
class HistorialAdmin(admin.ModelAdmin):
    list_display = ("id", "auto", "estado", "disparador", "usuario", "inicio", "fin")
    list_filter = ("estado", "disparador")


@admin.register(Reparacion)
class ReparacionAdmin(admin.ModelAdmin):
    list_display = ("id", "auto", "mecanico", "costo", "garantia_dias", "creado_en")
    search_fields = ("auto__patente", "descripcion")
