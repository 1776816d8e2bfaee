from django.contrib import admin
from .models import TrabajoEmail


@admin.register(TrabajoEmail)
class TrabajoEmailAdmin(admin.ModelAdmin):
    list_display = ("id", "tipo", "estado", "intentos", "creado_en", "procesado_en")
    list_filter = ("tipo", "estado")
