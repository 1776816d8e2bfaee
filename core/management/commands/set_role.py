from django.core.management.base import BaseCommand, CommandError
from django.contrib.auth.models import User

from core.models import Jefe
from core.roles import Rol
from core.services import asignar_rol
from notificaciones.cola import encolar
from notificaciones.models import TipoTrabajo


class Command(BaseCommand):
    help = "Asigna un rol a un usuario. Ej: python manage.py set_role pepe MECANICO --jefe 3"

    def add_arguments(self, parser):
        parser.add_argument("username")
        parser.add_argument("rol", choices=[c[0] for c in Rol.choices])
        parser.add_argument("--jefe", type=int, help="id del Jefe a cargo (solo MECANICO)")

    def handle(self, *args, **opts):
        try:
            u = User.objects.get(username=opts["username"])
        except User.DoesNotExist:
            raise CommandError("Usuario no existe")

        jefe = None
        if opts.get("jefe"):
            if opts["rol"] != Rol.MECANICO:
                raise CommandError("--jefe solo aplica al rol MECANICO")
            try:
                jefe = Jefe.objects.get(pk=opts["jefe"])
            except Jefe.DoesNotExist:
                raise CommandError("Jefe no existe")

        asignar_rol(u, opts["rol"], jefe=jefe)
        if u.email:
            encolar(TipoTrabajo.BIENVENIDA, {
                "email": u.email,
                "name": u.get_full_name() or u.username,
                "roleName": Rol(opts["rol"]).label,
            })
        self.stdout.write(self.style.SUCCESS(f"Rol {opts['rol']} asignado a {u.username}"))
