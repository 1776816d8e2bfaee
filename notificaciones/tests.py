import json
from io import StringIO
from unittest import mock

from django.core import mail
from django.core.management import call_command
from django.test import TestCase

from core.models import Notificacion
from core.roles import Rol
from core.testing import EscenarioTallerMixin, crear_usuario
from notificaciones.cola import encolar
from notificaciones.despachador import Notificador, datos_auto
from notificaciones.models import EstadoTrabajo, TipoTrabajo, TrabajoEmail
from notificaciones.worker import procesar_pendientes
from taller.models import EstadoAuto


class DespachadorTests(EscenarioTallerMixin, TestCase):
    def setUp(self):
        self.crear_escenario()

    def test_datos_auto(self):
        self.auto.estado = EstadoAuto.EN_REVISION
        datos = datos_auto(self.auto, EstadoAuto.ENTRADA)
        self.assertEqual(datos["licensePlate"], "ABC123")
        self.assertEqual(datos["statusName"], "En Revisión")
        self.assertEqual(datos["previousStatusName"], "Entrada")
        self.assertEqual(datos["email"], "cliente1@taller.test")

    def test_cambio_estado_en_linea(self):
        Notificador(diferido=False).cambio_estado(self.auto, EstadoAuto.PENDIENTE)
        self.assertTrue(Notificacion.objects.filter(destinatario=self.u_cliente).exists())
        self.assertEqual(TrabajoEmail.objects.get().tipo, TipoTrabajo.CAMBIO_ESTADO)

    def test_diferido_espera_el_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            Notificador().cambio_estado(self.auto)
        self.assertEqual(len(callbacks), 1)
        self.assertFalse(TrabajoEmail.objects.exists())

    def test_fallas_no_se_propagan(self):
        """Cualquier error del despacho se registra y se descarta."""
        with mock.patch("notificaciones.despachador.encolar", side_effect=RuntimeError("cola caída")):
            with self.assertLogs("notificaciones.despachador", level="ERROR"):
                Notificador(diferido=False).cambio_estado(self.auto)
                Notificador(diferido=False).presupuesto(self.auto, {"description": "x", "cost": 1})

    def test_cliente_sin_email_no_encola(self):
        self.u_cliente.email = ""
        self.u_cliente.save()
        self.auto.refresh_from_db()
        Notificador(diferido=False).cambio_estado(self.auto)
        self.assertFalse(TrabajoEmail.objects.exists())
        self.assertTrue(Notificacion.objects.exists())


class ColaYWorkerTests(TestCase):
    def test_tipo_desconocido(self):
        with self.assertRaises(ValueError):
            encolar("faxEmail", {})

    def test_worker_envia_y_marca(self):
        encolar(TipoTrabajo.PRUEBA, {"email": "a@b.test"})
        encolar(TipoTrabajo.CAMBIO_ESTADO, {"carData": {"licensePlate": "ABC123"}})  # sin email: falla

        enviados, fallidos = procesar_pendientes(limite=10)

        self.assertEqual((enviados, fallidos), (1, 1))
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["a@b.test"])
        fallido = TrabajoEmail.objects.get(estado=EstadoTrabajo.FALLIDO)
        self.assertEqual(fallido.intentos, 1)
        self.assertTrue(fallido.error)

    def test_fallidos_no_se_reencolan(self):
        encolar(TipoTrabajo.BIENVENIDA, {"name": "sin email"})
        procesar_pendientes()
        self.assertEqual(procesar_pendientes(), (0, 0))

    def test_email_de_presupuesto(self):
        encolar(TipoTrabajo.PRESUPUESTO, {
            "carData": {"licensePlate": "ABC123", "email": "c@d.test", "name": "Ana",
                        "acceptUrl": "http://front/accept-budget?carId=1"},
            "budgetData": {"description": "Frenos", "cost": "150.00"},
        })
        procesar_pendientes()
        self.assertIn("150.00", mail.outbox[0].body)
        self.assertIn("accept-budget", mail.outbox[0].body)

    def test_email_de_restablecimiento(self):
        encolar(TipoTrabajo.RESTABLECER_CLAVE, {"email": "a@b.test", "name": "Ana", "uid": "MQ", "token": "abc-123"})
        procesar_pendientes()
        self.assertIn("reset-password?uid=MQ&token=abc-123", mail.outbox[0].body)

    def test_comando_once(self):
        encolar(TipoTrabajo.PRUEBA, {"email": "a@b.test"})
        out = StringIO()
        call_command("procesar_emails", "--once", stdout=out)
        self.assertIn("enviados=1", out.getvalue())
        self.assertEqual(TrabajoEmail.objects.get().estado, EstadoTrabajo.ENVIADO)


class EmailPruebaApiTests(TestCase):
    def test_solo_admin(self):
        cliente, _ = crear_usuario("cliente1", Rol.CLIENTE)
        self.client.force_login(cliente)
        r = self.client.post("/api/email/test/", json.dumps({}), content_type="application/json")
        self.assertEqual(r.status_code, 403)

    def test_encola_prueba(self):
        admin, _ = crear_usuario("admin1", Rol.ADMIN)
        self.client.force_login(admin)
        r = self.client.post("/api/email/test/", json.dumps({"email": "x@y.test"}),
                             content_type="application/json")
        self.assertEqual(r.status_code, 202)
        trabajo = TrabajoEmail.objects.get(pk=r.json()["data"]["jobId"])
        self.assertEqual(trabajo.tipo, TipoTrabajo.PRUEBA)
