import re

from django.core.exceptions import ValidationError

# Formatos de patente: AAA999 (anterior) y AA999AA (Mercosur)
PATENTE_RE = re.compile(r"^(?:[A-Z]{3}\d{3}|[A-Z]{2}\d{3}[A-Z]{2})$")
LARGO_CHASIS = 17


def normalizar_patente(valor):
    return re.sub(r"[\s\-\.]", "", (valor or "")).upper()


def validar_patente(valor):
    patente = normalizar_patente(valor)
    if not patente:
        raise ValidationError("La patente es obligatoria")
    if not PATENTE_RE.match(patente):
        raise ValidationError("Formato de patente inválido (AAA123 o AA123BB)")
    return patente


def validar_chasis(valor):
    chasis = (valor or "").strip().upper()
    if len(chasis) != LARGO_CHASIS:
        raise ValidationError(f"El chasis debe tener exactamente {LARGO_CHASIS} caracteres")
    return chasis
