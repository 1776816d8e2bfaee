"""Fábricas de datos para los tests de las apps."""
from django.contrib.auth.models import User

from .roles import Rol
from .services import asignar_rol


def crear_usuario(username, rol=Rol.CLIENTE, jefe=None, **campos):
    """Crea usuario + perfil de actor; devuelve (user recargado, actor)."""
    campos.setdefault("email", f"{username}@taller.test")
    campos.setdefault("first_name", username.capitalize())
    campos.setdefault("last_name", "Prueba")
    user = User.objects.create_user(username=username, password="test123", **campos)
    actor = asignar_rol(user, rol, jefe=jefe)
    # recarga para no arrastrar el Perfil cacheado por la señal
    return User.objects.get(pk=user.pk), actor


class EscenarioTallerMixin:
    """Un taller con un actor de cada rol y un auto del cliente en Entrada."""

    def crear_escenario(self):
        from taller.models import Auto, EstadoAuto

        self.admin, _ = crear_usuario("admin1", Rol.ADMIN)
        self.u_jefe, self.jefe = crear_usuario("jefe1", Rol.JEFE)
        self.u_jefe2, self.jefe2 = crear_usuario("jefe2", Rol.JEFE)
        self.u_mecanico, self.mecanico = crear_usuario("mecanico1", Rol.MECANICO, jefe=self.jefe)
        self.u_mecanico2, self.mecanico2 = crear_usuario("mecanico2", Rol.MECANICO, jefe=self.jefe2)
        self.u_cliente, self.cliente = crear_usuario("cliente1", Rol.CLIENTE)
        self.u_otro, self.otro_cliente = crear_usuario("cliente2", Rol.CLIENTE)
        self.recepcionista, _ = crear_usuario("recepcion1", Rol.RECEPCIONISTA)

        self.auto = Auto.objects.create(
            cliente=self.cliente,
            patente="ABC123",
            marca="Ford",
            modelo="Fiesta",
            kms=50000,
            chasis="1HGCM82633A004352",
            estado=EstadoAuto.ENTRADA,
        )
        return self.auto
