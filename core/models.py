from django.db import models
from django.contrib.auth.models import User

from .roles import Rol


class Perfil(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="perfil")
    rol = models.CharField(max_length=32, choices=Rol.choices, default=Rol.CLIENTE)

    def __str__(self):
        return f"{self.user.username} · {self.get_rol_display()}"


class Jefe(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="jefe")
    creado_en = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Jefe"
        verbose_name_plural = "Jefes"

    def __str__(self):
        return self.user.get_full_name() or self.user.username


class Mecanico(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="mecanico")
    jefe = models.ForeignKey(Jefe, null=True, blank=True, on_delete=models.SET_NULL, related_name="mecanicos")
    creado_en = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Mecánico"
        verbose_name_plural = "Mecánicos"

    def __str__(self):
        return self.user.get_full_name() or self.user.username


class Cliente(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="cliente")
    telefono = models.CharField(max_length=30, blank=True)
    cuil = models.CharField(max_length=13, blank=True)
    creado_en = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Cliente"
        verbose_name_plural = "Clientes"

    def __str__(self):
        return self.user.get_full_name() or self.user.username


class Notificacion(models.Model):
    titulo = models.CharField(max_length=140)
    mensaje = models.TextField(blank=True)
    url = models.CharField(max_length=300, blank=True)  # ruta interna para "ir a…"
    destinatario = models.ForeignKey(User, null=True, blank=True, on_delete=models.CASCADE, related_name="notificaciones")
    leida = models.BooleanField(default=False)
    creada_en = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-creada_en"]
        indexes = [models.Index(fields=["leida", "creada_en"])]

    def __str__(self):
        return f"{self.titulo} · {'leída' if self.leida else 'no leída'}"


class AuditLog(models.Model):
    app = models.CharField(max_length=40)
    action = models.CharField(max_length=40)       # CREATE/UPDATE/EXPIRE/LOGIN/LOGOUT
    user = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL)
    object_repr = models.CharField(max_length=140, blank=True, default="")
    extra = models.TextField(blank=True, default="")
    ts = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-ts"]
        indexes = [models.Index(fields=["app", "action", "ts"])]

    def __str__(self):
        return f"[{self.ts:%Y-%m-%d %H:%M}] {self.app}:{self.action} · {self.object_repr or '-'}"
