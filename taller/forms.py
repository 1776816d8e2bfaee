from django import forms
from django.utils import timezone

from .models import Auto
from .validators import validar_chasis, validar_patente


class AutoForm(forms.ModelForm):
    class Meta:
        model = Auto
        fields = ["patente", "marca", "modelo", "anio", "kms", "chasis", "descripcion", "prioridad"]
        error_messages = {
            "patente": {"unique": "Ya existe un auto con esa patente"},
            "marca": {"required": "La marca es obligatoria"},
            "modelo": {"required": "El modelo es obligatorio"},
        }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["chasis"].max_length = None
        self.fields["chasis"].validators = []
        self.fields["patente"].validators = []
        self.fields["prioridad"].required = False
        self.fields["kms"].required = False

    def clean_patente(self):
        return validar_patente(self.cleaned_data.get("patente"))

    def clean_chasis(self):
        return validar_chasis(self.cleaned_data.get("chasis"))

    def clean_anio(self):
        anio = self.cleaned_data.get("anio")
        if anio is not None and not (1900 <= anio <= timezone.now().year + 1):
            raise forms.ValidationError("El año debe ser válido")
        return anio

    def clean_kms(self):
        kms = self.cleaned_data.get("kms")
        return 0 if kms is None else kms

    def clean_prioridad(self):
        return self.cleaned_data.get("prioridad") or Auto._meta.get_field("prioridad").default
