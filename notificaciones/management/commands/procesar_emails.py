import time

from django.core.management.base import BaseCommand

from notificaciones.worker import procesar_pendientes


class Command(BaseCommand):
    help = "Worker de emails: consume la cola de TrabajoEmail. Ej: python manage.py procesar_emails --once"

    def add_arguments(self, parser):
        parser.add_argument("--once", action="store_true", help="procesa un solo lote y termina")
        parser.add_argument("--lote", type=int, default=5, help="trabajos por lote")
        parser.add_argument("--intervalo", type=float, default=2.0, help="segundos de espera con la cola vacía")

    def handle(self, *args, **opts):
        self.stdout.write(f"[worker] consumiendo cola de emails (lote={opts['lote']})")
        while True:
            enviados, fallidos = procesar_pendientes(opts["lote"])
            if enviados or fallidos:
                self.stdout.write(f"[worker] enviados={enviados} fallidos={fallidos}")
            if opts["once"]:
                break
            if not (enviados or fallidos):
                time.sleep(opts["intervalo"])
        self.stdout.write(self.style.SUCCESS("[worker] fin"))
