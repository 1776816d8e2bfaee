from django.contrib import admin
from .models import Perfil, Cliente, Mecanico, Jefe, Notificacion, AuditLog


@admin.register(Perfil)
class PerfilAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "rol")
    list_filter = ("rol",)


@admin.register(Mecanico)
class MecanicoAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "jefe", "creado_en")


admin.site.register(Cliente)
admin.site.register(Jefe)


@admin.register(Notificacion)
class NotificacionAdmin(admin.ModelAdmin):
    list_display = ("id", "titulo", "destinatario", "leida", "creada_en")


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("id", "app", "action", "user", "object_repr", "ts")
    list_filter = ("app", "action")
