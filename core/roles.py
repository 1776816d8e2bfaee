import unicodedata

from django.db import models


class Rol(models.TextChoices):
    ADMIN = "ADMIN", "Administrador"
    JEFE = "JEFE", "Jefe de Taller"
    MECANICO = "MECANICO", "Mecánico"
    CLIENTE = "CLIENTE", "Cliente"
    RECEPCIONISTA = "RECEPCIONISTA", "Recepcionista"


def normalizar_rol(nombre):
    """'Mecánico', 'MECANICO' y 'mecanico' son el mismo rol."""
    if not nombre:
        return ""
    texto = unicodedata.normalize("NFD", str(nombre).strip().lower())
    return "".join(c for c in texto if not unicodedata.combining(c))


# Conjuntos de roles que habilitan cada grupo de transiciones
SOLO_ADMIN = ("admin",)
ADMIN_JEFE = ("admin", "jefe")
ADMIN_MECANICO_JEFE = ("admin", "mecanico", "jefe")
ADMIN_RECEPCIONISTA = ("admin", "recepcionista")
ADMIN_CLIENTE = ("admin", "cliente")
PERSONAL = ("admin", "mecanico", "jefe", "recepcionista")
