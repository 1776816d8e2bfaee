import json
from decimal import Decimal

from django.core.cache import cache
from django.test import TestCase

from core.errors import EstadoInvalido, ErrorValidacion, Prohibido
from core.testing import EscenarioTallerMixin
from notificaciones.models import TrabajoEmail, TipoTrabajo
from taller import services
from taller.forms import AutoForm
from taller.models import Auto, EstadoAuto, HistorialEstadoAuto, Reparacion


class BaseTallerTestCase(EscenarioTallerMixin, TestCase):
    def setUp(self):
        cache.clear()
        self.crear_escenario()

    def refrescar(self):
        self.auto.refresh_from_db()
        return self.auto.estado


class MaquinaEstadosAutoTests(BaseTallerTestCase):
    def test_registrar_auto_arranca_en_entrada(self):
        """Un auto ingresado queda en Entrada con su primer tramo de historial abierto."""
        auto = services.registrar_auto(
            self.recepcionista, self.cliente,
            patente="AB123CD", marca="Fiat", modelo="Cronos", kms=10, chasis="9BD358A4NFY123456",
        )
        self.assertEqual(auto.estado, EstadoAuto.ENTRADA)
        tramo = HistorialEstadoAuto.objects.get(auto=auto)
        self.assertEqual(tramo.disparador, "INGRESO")
        self.assertIsNone(tramo.fin)

    def test_cliente_no_registra_autos_de_otro(self):
        with self.assertRaises(Prohibido):
            services.registrar_auto(
                self.u_otro, self.cliente,
                patente="AB123CD", marca="Fiat", modelo="Cronos", kms=10, chasis="9BD358A4NFY123456",
            )

    def test_transicion_manual_cambia_estado_y_cierra_tramo(self):
        services.transicion_manual(self.auto, self.u_mecanico, EstadoAuto.EN_REPARACION, descripcion="Cambio de embrague")
        services.transicion_manual(self.auto, self.u_mecanico, EstadoAuto.FINALIZADO)

        self.assertEqual(self.refrescar(), EstadoAuto.FINALIZADO)
        self.assertEqual(self.auto.descripcion, "Cambio de embrague")
        abiertos = HistorialEstadoAuto.objects.filter(auto=self.auto, fin__isnull=True)
        self.assertEqual(abiertos.count(), 1)
        self.assertEqual(abiertos.first().estado, EstadoAuto.FINALIZADO)

    def test_transicion_manual_codigo_inexistente(self):
        """Ninguna transición puede dejar un código de estado fuera de los 8 definidos."""
        for codigo in (0, 9, "abc", None):
            with self.assertRaises(ErrorValidacion):
                services.transicion_manual(self.auto, self.admin, codigo)
        self.assertEqual(self.refrescar(), EstadoAuto.ENTRADA)

    def test_transicion_manual_rol_insuficiente(self):
        for actor in (self.u_cliente, self.recepcionista):
            with self.assertRaises(Prohibido):
                services.transicion_manual(self.auto, actor, EstadoAuto.EN_REVISION)
        self.assertEqual(self.refrescar(), EstadoAuto.ENTRADA)

    def test_entregar_dos_veces(self):
        """La segunda entrega de un auto ya Entregado es un estado inválido."""
        services.transicion_manual(self.auto, self.admin, EstadoAuto.FINALIZADO)
        services.entregar_auto(self.auto, self.recepcionista)
        self.assertEqual(self.refrescar(), EstadoAuto.ENTREGADO)

        with self.assertRaises(EstadoInvalido):
            services.entregar_auto(self.auto, self.recepcionista)
        self.assertEqual(self.refrescar(), EstadoAuto.ENTREGADO)

    def test_entregar_desde_cualquier_estado_no_entregado(self):
        """La entrega no exige un estado previo; solo rechaza la re-entrega."""
        services.transicion_manual(self.auto, self.admin, EstadoAuto.EN_REPARACION)
        services.entregar_auto(self.auto, self.recepcionista)
        self.assertEqual(self.refrescar(), EstadoAuto.ENTREGADO)
        ultimo = HistorialEstadoAuto.objects.filter(auto=self.auto).order_by("-id").first()
        self.assertEqual(ultimo.disparador, services.Disparador.ENTREGA)

    def test_finalizar_con_solicitud_viva_no_se_permite(self):
        """Con una solicitud en reparación, el cierre pasa por la solicitud y no deja nada colgado."""
        from solicitudes import services as solicitudes_services
        from solicitudes.models import EstadoSolicitud

        s = solicitudes_services.crear_solicitud(self.u_cliente, self.auto, "Ruido", mecanico_preferido=self.mecanico)
        solicitudes_services.asignar_mecanico(s, self.u_jefe, self.mecanico)
        solicitudes_services.actualizar_estado(s, self.u_mecanico, EstadoSolicitud.EN_REPARACION)

        with self.assertRaises(EstadoInvalido):
            services.finalizar_reparacion(self.auto, self.u_mecanico, "Listo", Decimal("10"))
        self.assertEqual(self.refrescar(), EstadoAuto.EN_REPARACION)
        self.assertFalse(Reparacion.objects.exists())

        solicitudes_services.actualizar_estado(s, self.u_mecanico, EstadoSolicitud.COMPLETADA, costo=Decimal("10"))
        s.refresh_from_db()
        self.assertEqual(s.estado, EstadoSolicitud.COMPLETADA)
        self.assertEqual(self.refrescar(), EstadoAuto.FINALIZADO)
        self.assertEqual(Reparacion.objects.get(), s.reparacion)

    def test_crear_reparacion_directa(self):
        rep = services.crear_reparacion(self.auto, self.u_jefe, self.mecanico, "Embrague", Decimal("80"))
        self.assertEqual(self.refrescar(), EstadoAuto.EN_REPARACION)
        self.assertEqual(self.auto.mecanico, self.mecanico)
        self.assertEqual(rep.garantia_dias, 90)

        with self.assertRaises(Prohibido):
            services.crear_reparacion(self.auto, self.u_cliente, self.mecanico, "x", Decimal("1"))

    def test_crear_reparacion_con_solicitud_viva(self):
        from solicitudes import services as solicitudes_services

        solicitudes_services.crear_solicitud(self.u_cliente, self.auto, "Ruido", mecanico_preferido=self.mecanico)
        with self.assertRaises(EstadoInvalido):
            services.crear_reparacion(self.auto, self.admin, self.mecanico, "Embrague", Decimal("80"))
        self.assertFalse(Reparacion.objects.exists())

    def test_correccion_de_reparacion(self):
        """Admin, jefe o el mecánico de la reparación la corrigen; otro mecánico no."""
        rep = services.finalizar_reparacion(self.auto, self.u_mecanico, "Aceite", Decimal("30"))

        with self.assertRaises(Prohibido):
            services.actualizar_reparacion(self.u_mecanico2, rep, costo=Decimal("35"))
        rep = services.actualizar_reparacion(self.u_mecanico, rep, descripcion="Aceite y filtro", costo=Decimal("35"))
        rep.refresh_from_db()
        self.assertEqual((rep.descripcion, rep.costo), ("Aceite y filtro", Decimal("35.00")))

        with self.assertRaises(ErrorValidacion):
            services.actualizar_reparacion(self.u_jefe, rep, descripcion="")

    def test_correccion_de_costo_con_pago_pendiente(self):
        from pagos import services as pagos_services

        rep = services.finalizar_reparacion(self.auto, self.admin, "Aceite", Decimal("30"))
        pagos_services.crear_preferencia(self.u_cliente, rep)
        with self.assertRaises(EstadoInvalido):
            services.actualizar_reparacion(self.admin, rep, costo=Decimal("40"))
        services.actualizar_reparacion(self.admin, rep, garantia_dias=180)
        rep.refresh_from_db()
        self.assertEqual((rep.costo, rep.garantia_dias), (Decimal("30.00"), 180))

    def test_finalizar_reparacion_crea_reparacion(self):
        services.transicion_manual(self.auto, self.admin, EstadoAuto.EN_REPARACION)
        rep = services.finalizar_reparacion(self.auto, self.u_mecanico, "Pastillas de freno", Decimal("150.00"))

        self.assertEqual(self.refrescar(), EstadoAuto.FINALIZADO)
        self.assertEqual(rep.costo, Decimal("150.00"))
        self.assertEqual(rep.garantia_dias, 90)
        self.assertEqual(rep.mecanico, self.mecanico)

    def test_finalizar_reparacion_costo_negativo(self):
        with self.assertRaises(ErrorValidacion):
            services.finalizar_reparacion(self.auto, self.admin, "x", Decimal("-1"))
        self.assertFalse(Reparacion.objects.exists())
        self.assertEqual(self.refrescar(), EstadoAuto.ENTRADA)

    def test_finalizar_desde_entregado_no_se_permite(self):
        services.transicion_manual(self.auto, self.admin, EstadoAuto.ENTREGADO)
        with self.assertRaises(EstadoInvalido):
            services.finalizar_reparacion(self.auto, self.admin, "x", Decimal("10"))
        self.assertFalse(Reparacion.objects.exists())

    def test_eliminar_auto_con_reparaciones_bloqueado(self):
        services.finalizar_reparacion(self.auto, self.admin, "Service", Decimal("20"))
        with self.assertRaises(EstadoInvalido):
            services.eliminar_auto(self.admin, self.auto)
        self.assertTrue(Auto.objects.filter(pk=self.auto.pk).exists())

    def test_notificacion_despues_del_commit(self):
        """El cambio de estado encola el email recién cuando la transacción confirma."""
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            services.transicion_manual(self.auto, self.admin, EstadoAuto.EN_REVISION)
            self.assertFalse(TrabajoEmail.objects.exists())

        self.assertTrue(callbacks)
        trabajo = TrabajoEmail.objects.get(tipo=TipoTrabajo.CAMBIO_ESTADO)
        self.assertEqual(trabajo.payload["carData"]["status"], EstadoAuto.EN_REVISION)
        self.assertEqual(trabajo.payload["carData"]["previousStatus"], EstadoAuto.ENTRADA)
        self.assertEqual(trabajo.payload["carData"]["email"], self.u_cliente.email)


class AutoFormTests(BaseTallerTestCase):
    def datos(self, **extra):
        base = {
            "patente": "ab-123 cd",
            "marca": "Renault",
            "modelo": "Kangoo",
            "kms": 1000,
            "chasis": "8a1kc1b15dl123456",
        }
        base.update(extra)
        return base

    def test_normaliza_patente_y_chasis(self):
        form = AutoForm(self.datos())
        self.assertTrue(form.is_valid(), form.errors)
        self.assertEqual(form.cleaned_data["patente"], "AB123CD")
        self.assertEqual(form.cleaned_data["chasis"], "8A1KC1B15DL123456")
        self.assertEqual(form.cleaned_data["prioridad"], 2)

    def test_patente_formato_invalido(self):
        form = AutoForm(self.datos(patente="A1B2C3"))
        self.assertFalse(form.is_valid())
        self.assertIn("patente", form.errors)

    def test_chasis_largo_incorrecto(self):
        for chasis in ("SHORT", "8A1KC1B15DL1234567"):
            form = AutoForm(self.datos(chasis=chasis))
            self.assertFalse(form.is_valid())
            self.assertIn("chasis", form.errors)

    def test_patente_duplicada(self):
        form = AutoForm(self.datos(patente="abc 123"))
        self.assertFalse(form.is_valid())
        self.assertIn("Ya existe un auto con esa patente", form.errors["patente"])

    def test_kms_negativos(self):
        form = AutoForm(self.datos(kms=-5))
        self.assertFalse(form.is_valid())
        self.assertIn("kms", form.errors)


class TallerApiTests(BaseTallerTestCase):
    def post(self, url, data, user):
        self.client.force_login(user)
        return self.client.post(url, json.dumps(data), content_type="application/json")

    def test_estados_publicos(self):
        r = self.client.get("/api/car-states/statuses/")
        self.assertEqual(r.status_code, 200)
        ids = [e["id"] for e in r.json()["data"]]
        self.assertEqual(ids, list(range(1, 9)))

    def test_sin_sesion_401(self):
        r = self.client.get("/api/cars/")
        self.assertEqual(r.status_code, 401)
        self.assertEqual(r.json()["error"], "unauthenticated")

    def test_alta_de_auto(self):
        r = self.post("/api/cars/", {
            "clientId": self.cliente.id,
            "licensePlate": "ad 456 fg",
            "brand": "VW",
            "model": "Gol",
            "kms": 0,
            "chassis": "9BWZZZ377VT004251",
        }, self.recepcionista)
        self.assertEqual(r.status_code, 201, r.content)
        body = r.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["data"]["licensePlate"], "AD456FG")
        self.assertEqual(body["data"]["statusId"], EstadoAuto.ENTRADA)

    def test_alta_de_auto_invalida(self):
        r = self.post("/api/cars/", {
            "clientId": self.cliente.id,
            "licensePlate": "ABC123",
            "brand": "VW",
            "model": "Gol",
            "chassis": "CORTO",
        }, self.admin)
        self.assertEqual(r.status_code, 400)
        body = r.json()
        self.assertEqual(body["error"], "validation_error")
        self.assertIn("patente", body["data"])
        self.assertIn("chasis", body["data"])

    def test_detalle_de_auto_ajeno(self):
        self.client.force_login(self.u_otro)
        r = self.client.get(f"/api/cars/{self.auto.id}/")
        self.assertEqual(r.status_code, 403)

        self.client.force_login(self.u_cliente)
        r = self.client.get(f"/api/cars/{self.auto.id}/")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["data"]["licensePlate"], "ABC123")

    def test_auto_inexistente_404(self):
        self.client.force_login(self.admin)
        r = self.client.get("/api/cars/999999/")
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.json()["error"], "not_found")

    def test_buscar_por_patente(self):
        self.client.force_login(self.u_mecanico)
        r = self.client.get("/api/cars/plate/abc-123/")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["data"]["id"], self.auto.id)

    def test_transicion_con_codigo_invalido(self):
        r = self.post("/api/car-states/transition/", {"carId": self.auto.id, "newStatusId": 99}, self.admin)
        self.assertEqual(r.status_code, 400)
        self.assertEqual(self.refrescar(), EstadoAuto.ENTRADA)

    def test_entrega_por_cliente_prohibida(self):
        r = self.post("/api/car-states/deliver-car/", {"carId": self.auto.id}, self.u_cliente)
        self.assertEqual(r.status_code, 403)
        self.assertEqual(r.json()["error"], "forbidden")

    def test_finalizar_y_entregar(self):
        r = self.post("/api/car-states/finish-repair/", {
            "carId": self.auto.id, "finalDescription": "Service completo", "finalCost": "150.00",
        }, self.u_mecanico)
        self.assertEqual(r.status_code, 200, r.content)
        self.assertEqual(r.json()["data"]["repair"]["cost"], "150.00")

        r = self.post("/api/car-states/deliver-car/", {"carId": self.auto.id}, self.recepcionista)
        self.assertEqual(r.status_code, 200)
        r = self.post("/api/car-states/deliver-car/", {"carId": self.auto.id}, self.recepcionista)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()["error"], "invalid_state")

    def test_aceptar_presupuesto_sin_presupuesto(self):
        r = self.post("/api/car-states/accept-budget/", {"carId": self.auto.id}, self.u_cliente)
        self.assertEqual(r.status_code, 409)

    def test_listado_de_reparaciones_se_invalida(self):
        """El listado cacheado refleja una reparación nueva tras la invalidación."""
        self.client.force_login(self.admin)
        r = self.client.get("/api/repairs/")
        self.assertEqual(r.json()["data"], [])

        with self.captureOnCommitCallbacks(execute=True):
            services.finalizar_reparacion(self.auto, self.admin, "Aceite", Decimal("30"))

        r = self.client.get("/api/repairs/")
        self.assertEqual(len(r.json()["data"]), 1)

    def test_reparacion_visible_para_duenio_y_no_para_otro(self):
        rep = services.finalizar_reparacion(self.auto, self.admin, "Aceite", Decimal("30"))

        self.client.force_login(self.u_cliente)
        self.assertEqual(self.client.get(f"/api/repairs/{rep.id}/").status_code, 200)
        self.client.force_login(self.u_otro)
        self.assertEqual(self.client.get(f"/api/repairs/{rep.id}/").status_code, 403)
        self.client.force_login(self.u_mecanico2)
        self.assertEqual(self.client.get(f"/api/repairs/{rep.id}/").status_code, 403)

    def test_eliminar_reparacion_solo_admin(self):
        rep = services.finalizar_reparacion(self.auto, self.admin, "Aceite", Decimal("30"))
        self.client.force_login(self.u_jefe)
        self.assertEqual(self.client.delete(f"/api/repairs/{rep.id}/").status_code, 403)
        self.client.force_login(self.admin)
        self.assertEqual(self.client.delete(f"/api/repairs/{rep.id}/").status_code, 200)
        self.assertFalse(Reparacion.objects.filter(pk=rep.pk).exists())

    def put(self, url, data, user):
        self.client.force_login(user)
        return self.client.put(url, json.dumps(data), content_type="application/json")

    def test_actualizar_auto(self):
        r = self.put(f"/api/cars/{self.auto.id}/", {"licensePlate": "ab 987 cd", "kms": 61000}, self.recepcionista)
        self.assertEqual(r.status_code, 200, r.content)
        self.auto.refresh_from_db()
        self.assertEqual((self.auto.patente, self.auto.kms), ("AB987CD", 61000))
        self.assertEqual(self.auto.chasis, "1HGCM82633A004352")
        self.assertEqual(self.auto.estado, EstadoAuto.ENTRADA)

    def test_actualizar_auto_valida_patente_y_rol(self):
        services.registrar_auto(
            self.admin, self.cliente, patente="AA111AA", marca="Fiat", modelo="Uno", chasis="9BD358A4NFY123456",
        )
        r = self.put(f"/api/cars/{self.auto.id}/", {"licensePlate": "aa111aa"}, self.admin)
        self.assertEqual(r.status_code, 400)
        self.assertIn("patente", r.json()["data"])

        r = self.put(f"/api/cars/{self.auto.id}/", {"licensePlate": "XYZ"}, self.admin)
        self.assertEqual(r.status_code, 400)

        r = self.put(f"/api/cars/{self.auto.id}/", {"kms": 1}, self.u_cliente)
        self.assertEqual(r.status_code, 403)
        self.assertEqual(self.refrescar(), EstadoAuto.ENTRADA)

    def test_crear_y_corregir_reparacion(self):
        r = self.post("/api/repairs/", {
            "carId": self.auto.id, "mechanicId": self.mecanico.id, "description": "Embrague", "cost": "80.5",
        }, self.u_jefe)
        self.assertEqual(r.status_code, 201, r.content)
        rep_id = r.json()["data"]["id"]
        self.assertEqual(self.refrescar(), EstadoAuto.EN_REPARACION)

        r = self.put(f"/api/repairs/{rep_id}/", {"cost": "95", "warranty": 30}, self.u_mecanico)
        self.assertEqual(r.status_code, 200, r.content)
        self.assertEqual(r.json()["data"]["cost"], "95.00")
        self.assertEqual(r.json()["data"]["warranty"], 30)

        r = self.put(f"/api/repairs/{rep_id}/", {"cost": "1"}, self.u_mecanico2)
        self.assertEqual(r.status_code, 403)

    def test_crear_reparacion_mecanico_inexistente(self):
        r = self.post("/api/repairs/", {
            "carId": self.auto.id, "mechanicId": 999999, "description": "x", "cost": 1,
        }, self.admin)
        self.assertEqual(r.status_code, 404)
        self.assertFalse(Reparacion.objects.exists())
