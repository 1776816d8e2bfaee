import json
from datetime import timedelta
from decimal import Decimal

from django.core.cache import cache
from django.test import TestCase, override_settings
from django.utils import timezone

from core.errors import EstadoInvalido, ErrorValidacion, PagoPendienteDuplicado, Prohibido
from core.models import AuditLog
from core.testing import EscenarioTallerMixin
from pagos import services
from pagos.models import EstadoPago, MetodoPago, Pago
from taller.models import Reparacion


class BasePagoTestCase(EscenarioTallerMixin, TestCase):
    def setUp(self):
        cache.clear()
        self.crear_escenario()
        self.reparacion = Reparacion.objects.create(
            auto=self.auto, mecanico=self.mecanico, descripcion="Embrague", costo=Decimal("150.00"),
        )

    def envejecer(self, pago, minutos):
        """creado_en es auto_now_add: se mueve con update()."""
        Pago.objects.filter(pk=pago.pk).update(creado_en=timezone.now() - timedelta(minutes=minutos))
        pago.refresh_from_db()
        return pago


class VentanaPendienteTests(BasePagoTestCase):
    def test_crea_pago_pendiente(self):
        pago, pref = services.crear_preferencia(self.u_cliente, self.reparacion)
        self.assertEqual(pago.estado, EstadoPago.PENDIENTE)
        self.assertEqual(pago.monto, Decimal("150.00"))
        self.assertEqual(pago.metodo, MetodoPago.MERCADOPAGO_SIMULATION)
        self.assertTrue(pref["simulation"])
        self.assertTrue(pago.referencia_externa.startswith("sim_"))

    def test_duplicado_dentro_de_la_ventana(self):
        """A los 29 minutos el pendiente bloquea uno nuevo."""
        pago, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        self.envejecer(pago, 29)

        with self.assertRaises(PagoPendienteDuplicado) as ctx:
            services.crear_preferencia(self.u_cliente, self.reparacion)
        datos = ctx.exception.datos
        self.assertEqual(datos["existingPaymentId"], pago.pk)
        self.assertEqual(datos["canCancelAfter"], (pago.creado_en + timedelta(minutes=30)).isoformat())
        self.assertEqual(Pago.objects.filter(estado=EstadoPago.PENDIENTE).count(), 1)

    def test_reemplazo_automatico_fuera_de_la_ventana(self):
        """A los 31 minutos el viejo se cancela y se crea uno nuevo."""
        viejo, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        self.envejecer(viejo, 31)

        nuevo, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        viejo.refresh_from_db()
        self.assertEqual(viejo.estado, EstadoPago.CANCELADO)
        self.assertNotEqual(nuevo.pk, viejo.pk)
        self.assertEqual(Pago.objects.filter(reparacion=self.reparacion, estado=EstadoPago.PENDIENTE).get(), nuevo)
        self.assertTrue(AuditLog.objects.filter(app="PAGOS", action="EXPIRE").exists())

    def test_ahora_explicito(self):
        pago, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        with self.assertRaises(PagoPendienteDuplicado):
            services.crear_preferencia(self.u_cliente, self.reparacion, ahora=pago.creado_en + timedelta(minutes=29))
        nuevo, _ = services.crear_preferencia(
            self.u_cliente, self.reparacion, ahora=pago.creado_en + timedelta(minutes=31)
        )
        self.assertNotEqual(nuevo.pk, pago.pk)

    @override_settings(PAGO_PENDIENTE_MINUTOS=5)
    def test_ventana_configurable(self):
        pago, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        self.envejecer(pago, 6)
        services.crear_preferencia(self.u_cliente, self.reparacion)
        pago.refresh_from_db()
        self.assertEqual(pago.estado, EstadoPago.CANCELADO)

    def test_reparacion_sin_costo(self):
        self.reparacion.costo = Decimal("0")
        self.reparacion.save()
        with self.assertRaises(ErrorValidacion):
            services.crear_preferencia(self.u_cliente, self.reparacion)

    def test_cliente_sin_nombre_completo(self):
        self.u_cliente.last_name = ""
        self.u_cliente.save()
        with self.assertRaises(ErrorValidacion):
            services.crear_preferencia(self.u_cliente, self.reparacion)

    def test_cliente_ajeno(self):
        with self.assertRaises(Prohibido):
            services.crear_preferencia(self.u_otro, self.reparacion)

    def test_estado_ventana(self):
        pago, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        v = services.estado_ventana(pago, ahora=pago.creado_en + timedelta(minutes=10, seconds=1))
        self.assertFalse(v["canCancelNow"])
        self.assertEqual(v["minutesLeft"], 20)
        v = services.estado_ventana(pago, ahora=pago.creado_en + timedelta(minutes=30))
        self.assertTrue(v["canCancelNow"])
        self.assertEqual(v["minutesLeft"], 0)


class CancelacionTests(BasePagoTestCase):
    def test_cancelacion_manual_dentro_de_la_ventana(self):
        """Cancelar a mano no espera los 30 minutos."""
        pago, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        pago = services.cancelar_pago(self.u_cliente, pago)
        self.assertEqual(pago.estado, EstadoPago.CANCELADO)

        nuevo, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        self.assertEqual(nuevo.estado, EstadoPago.PENDIENTE)

    def test_cancelar_no_pendiente(self):
        pago, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        services.confirmar_pago(self.admin, pago)
        with self.assertRaises(EstadoInvalido):
            services.cancelar_pago(self.u_cliente, pago)

    def test_cancelar_pago_ajeno(self):
        pago, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        with self.assertRaises(Prohibido):
            services.cancelar_pago(self.u_otro, pago)
        with self.assertRaises(Prohibido):
            services.cancelar_pago(self.u_mecanico, pago)

    def test_confirmar_solo_admin(self):
        pago, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        with self.assertRaises(Prohibido):
            services.confirmar_pago(self.u_cliente, pago)
        pago = services.confirmar_pago(self.admin, pago, referencia="mp_123")
        self.assertEqual(pago.estado, EstadoPago.PAGADO)
        self.assertEqual(pago.referencia_externa, "mp_123")


class PagosApiTests(BasePagoTestCase):
    def post(self, url, data, user):
        self.client.force_login(user)
        return self.client.post(url, json.dumps(data), content_type="application/json")

    def test_crear_y_duplicar(self):
        r = self.post("/api/payments/create-preference/",
                      {"repairId": self.reparacion.id, "clientId": self.cliente.id}, self.u_cliente)
        self.assertEqual(r.status_code, 201, r.content)
        pago_id = r.json()["data"]["payment"]["id"]

        r = self.post("/api/payments/create-preference/", {"repairId": self.reparacion.id}, self.u_cliente)
        self.assertEqual(r.status_code, 409)
        body = r.json()
        self.assertEqual(body["error"], "duplicate_pending_payment")
        self.assertEqual(body["data"]["existingPaymentId"], pago_id)

    def test_client_id_ajeno(self):
        r = self.post("/api/payments/create-preference/",
                      {"repairId": self.reparacion.id, "clientId": self.otro_cliente.id}, self.u_cliente)
        self.assertEqual(r.status_code, 403)

    def test_pendiente_y_cancelar(self):
        pago, _ = services.crear_preferencia(self.u_cliente, self.reparacion)
        self.client.force_login(self.u_cliente)
        r = self.client.get(f"/api/payments/pending/{self.reparacion.id}/")
        self.assertEqual(r.status_code, 200)
        data = r.json()["data"]
        self.assertEqual(data["payment"]["id"], pago.id)
        self.assertFalse(data["canCancelNow"])
        self.assertGreater(data["minutesLeft"], 0)

        r = self.post(f"/api/payments/cancel-pending/{pago.id}/", {}, self.u_cliente)
        self.assertEqual(r.status_code, 200)
        r = self.post(f"/api/payments/cancel-pending/{pago.id}/", {}, self.u_cliente)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()["error"], "invalid_state")

        r = self.client.get(f"/api/payments/pending/{self.reparacion.id}/")
        self.assertIsNone(r.json()["data"])

    def test_webhook_sin_sesion(self):
        r = self.client.post("/api/payments/webhook/", json.dumps({"type": "payment", "data": {"id": "1"}}),
                             content_type="application/json")
        self.assertEqual(r.status_code, 200)

    def test_reparacion_con_pagos_no_se_elimina(self):
        services.crear_preferencia(self.u_cliente, self.reparacion)
        self.client.force_login(self.admin)
        r = self.client.delete(f"/api/repairs/{self.reparacion.id}/")
        self.assertEqual(r.status_code, 409)
