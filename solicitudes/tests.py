import json
from decimal import Decimal
from unittest import mock

from django.core.cache import cache
from django.test import TestCase

from core.errors import EstadoInvalido, ErrorValidacion, Prohibido, SinJefeDisponible
from core.models import Jefe
from core.roles import Rol
from core.testing import EscenarioTallerMixin, crear_usuario
from notificaciones.models import TrabajoEmail, TipoTrabajo
from solicitudes import services
from solicitudes.models import EstadoSolicitud, SolicitudServicio
from taller import services as taller_services
from taller.models import EstadoAuto, HistorialEstadoAuto, Reparacion


class BaseSolicitudTestCase(EscenarioTallerMixin, TestCase):
    def setUp(self):
        cache.clear()
        self.crear_escenario()

    def crear(self, actor=None, **kwargs):
        kwargs.setdefault("mecanico_preferido", self.mecanico)
        return services.crear_solicitud(actor or self.u_cliente, self.auto, "Ruido en el tren delantero", **kwargs)

    def asignada(self):
        s = self.crear()
        services.asignar_mecanico(s, self.u_jefe, self.mecanico)
        return s

    def con_presupuesto(self, costo=Decimal("150.00")):
        s = self.asignada()
        services.enviar_presupuesto(s, self.u_mecanico, "Cambio de rótulas", costo)
        return s

    def estados(self, s):
        s.refresh_from_db()
        self.auto.refresh_from_db()
        return s.estado, self.auto.estado


class FlujoCompletoTests(BaseSolicitudTestCase):
    def test_escenario_a_creacion(self):
        """El cliente crea la solicitud: Pending y el auto pasa a Pendiente."""
        s = self.crear()
        self.assertEqual(self.estados(s), (EstadoSolicitud.PENDIENTE, EstadoAuto.PENDIENTE))
        self.assertEqual(s.cliente, self.cliente)

    def test_escenario_b_asignacion(self):
        s = self.asignada()
        self.assertEqual(self.estados(s), (EstadoSolicitud.ASIGNADA, EstadoAuto.EN_REVISION))
        self.assertEqual(s.mecanico_asignado, self.mecanico)
        self.assertEqual(self.auto.mecanico, self.mecanico)

    def test_escenario_c_presupuesto_y_aceptacion(self):
        s = self.con_presupuesto()
        self.assertEqual(self.estados(s), (EstadoSolicitud.PRESUPUESTO_ENVIADO, EstadoAuto.PENDIENTE))
        self.assertEqual(s.presupuesto_costo, Decimal("150.00"))

        services.aceptar_presupuesto(self.auto, self.u_cliente)
        self.assertEqual(self.estados(s), (EstadoSolicitud.EN_REPARACION, EstadoAuto.EN_REPARACION))

    def test_escenario_d_completar(self):
        s = self.con_presupuesto()
        services.aceptar_presupuesto(self.auto, self.u_cliente)
        services.actualizar_estado(s, self.u_mecanico, EstadoSolicitud.COMPLETADA, costo=Decimal("150.00"))

        self.assertEqual(self.estados(s), (EstadoSolicitud.COMPLETADA, EstadoAuto.FINALIZADO))
        rep = Reparacion.objects.get()
        self.assertEqual(rep.costo, Decimal("150.00"))
        self.assertEqual(rep.mecanico, self.mecanico)
        self.assertEqual(s.reparacion, rep)

    def test_escenario_e_cancelar_pendiente(self):
        """Cancelar devuelve el auto a Entrada, pasando por Cancelado en el historial."""
        s = self.crear()
        services.cancelar_solicitud(s, self.u_cliente)
        self.assertEqual(self.estados(s), (EstadoSolicitud.CANCELADA, EstadoAuto.ENTRADA))
        ultimos = list(
            HistorialEstadoAuto.objects.filter(auto=self.auto).order_by("-id").values_list("estado", flat=True)[:2]
        )
        self.assertEqual(ultimos, [EstadoAuto.ENTRADA, EstadoAuto.CANCELADO])

    def test_escenario_f_entrega(self):
        s = self.con_presupuesto()
        services.aceptar_presupuesto(self.auto, self.u_cliente)
        services.actualizar_estado(s, self.u_mecanico, EstadoSolicitud.COMPLETADA)
        taller_services.entregar_auto(self.auto, self.recepcionista)
        self.assertEqual(self.estados(s)[1], EstadoAuto.ENTREGADO)
        with self.assertRaises(EstadoInvalido):
            taller_services.entregar_auto(self.auto, self.recepcionista)

    def test_rechazo_termina_en_entrada(self):
        s = self.con_presupuesto()
        services.rechazar_presupuesto(self.auto, self.u_cliente)
        self.assertEqual(self.estados(s), (EstadoSolicitud.RECHAZADA, EstadoAuto.ENTRADA))
        self.assertTrue(
            HistorialEstadoAuto.objects.filter(auto=self.auto, estado=EstadoAuto.RECHAZADO).exists()
        )

    def test_iniciar_reparacion_directo(self):
        s = self.asignada()
        services.actualizar_estado(s, self.u_jefe, EstadoSolicitud.EN_REPARACION)
        self.assertEqual(self.estados(s), (EstadoSolicitud.EN_REPARACION, EstadoAuto.EN_REPARACION))

    def test_presupuesto_desde_en_reparacion(self):
        s = self.asignada()
        services.actualizar_estado(s, self.u_mecanico, EstadoSolicitud.EN_REPARACION)
        services.enviar_presupuesto(s, self.u_mecanico, "Adicional", Decimal("20"))
        self.assertEqual(self.estados(s), (EstadoSolicitud.PRESUPUESTO_ENVIADO, EstadoAuto.PENDIENTE))

    def test_presupuesto_encola_email_de_presupuesto(self):
        s = self.asignada()
        with self.captureOnCommitCallbacks(execute=True):
            services.enviar_presupuesto(s, self.u_mecanico, "Cambio de rótulas", Decimal("150.00"))
        trabajo = TrabajoEmail.objects.get(tipo=TipoTrabajo.PRESUPUESTO)
        self.assertEqual(trabajo.payload["budgetData"]["cost"], "150.00")
        self.assertIn("accept-budget", trabajo.payload["carData"]["acceptUrl"])


class ReglasDeEstadoTests(BaseSolicitudTestCase):
    def test_una_sola_solicitud_viva_por_auto(self):
        self.crear()
        with self.assertRaises(EstadoInvalido):
            self.crear()
        self.assertEqual(SolicitudServicio.objects.count(), 1)

    def test_nueva_solicitud_tras_cancelar(self):
        s = self.crear()
        services.cancelar_solicitud(s, self.u_cliente)
        otra = self.crear()
        self.assertEqual(otra.estado, EstadoSolicitud.PENDIENTE)

    def test_cancelar_terminal(self):
        s = self.crear()
        services.cancelar_solicitud(s, self.u_cliente)
        with self.assertRaises(EstadoInvalido):
            services.cancelar_solicitud(s, self.u_cliente)

    def test_completar_sin_presupuesto_ni_costo(self):
        s = self.asignada()
        services.actualizar_estado(s, self.u_mecanico, EstadoSolicitud.EN_REPARACION)
        with self.assertRaises(ErrorValidacion):
            services.actualizar_estado(s, self.u_mecanico, EstadoSolicitud.COMPLETADA)
        self.assertFalse(Reparacion.objects.exists())

    def test_completar_usa_costo_del_presupuesto(self):
        s = self.con_presupuesto(Decimal("99.90"))
        services.aceptar_presupuesto(self.auto, self.u_cliente)
        services.actualizar_estado(s, self.u_mecanico, EstadoSolicitud.COMPLETADA)
        self.assertEqual(Reparacion.objects.get().costo, Decimal("99.90"))

    def test_completar_desde_asignada_invalido(self):
        s = self.asignada()
        with self.assertRaises(EstadoInvalido):
            services.actualizar_estado(s, self.u_mecanico, EstadoSolicitud.COMPLETADA, costo=Decimal("10"))
        self.assertEqual(self.estados(s), (EstadoSolicitud.ASIGNADA, EstadoAuto.EN_REVISION))

    def test_estado_no_permitido(self):
        s = self.asignada()
        with self.assertRaises(ErrorValidacion):
            services.actualizar_estado(s, self.u_mecanico, EstadoSolicitud.RECHAZADA)

    def test_presupuesto_costo_negativo(self):
        s = self.asignada()
        with self.assertRaises(ErrorValidacion):
            services.enviar_presupuesto(s, self.u_mecanico, "x", Decimal("-1"))

    def test_presupuesto_sin_mecanico_asignado(self):
        s = self.crear()
        with self.assertRaises(EstadoInvalido):
            services.enviar_presupuesto(s, self.admin, "x", Decimal("1"))


class RuteoTests(BaseSolicitudTestCase):
    def test_jefe_del_mecanico_preferido(self):
        s = self.crear(mecanico_preferido=self.mecanico2)
        self.assertEqual(s.jefe_asignado, self.jefe2)

    def test_sin_preferido_elige_al_azar(self):
        s = self.crear(mecanico_preferido=None, elegir=lambda jefes: jefes[-1])
        self.assertIn(s.jefe_asignado, Jefe.objects.all())

    def test_preferido_sin_jefe_cae_al_azar(self):
        _, huerfano = crear_usuario("mecanico3", Rol.MECANICO)
        s = self.crear(mecanico_preferido=huerfano, elegir=lambda jefes: jefes[0])
        self.assertIsNotNone(s.jefe_asignado)

    def test_sin_jefes(self):
        Jefe.objects.all().delete()
        with self.assertRaises(SinJefeDisponible):
            self.crear(mecanico_preferido=None)
        self.assertFalse(SolicitudServicio.objects.exists())


class AutorizacionTests(BaseSolicitudTestCase):
    def test_cliente_ajeno_no_crea(self):
        with self.assertRaises(Prohibido):
            self.crear(actor=self.u_otro)

    def test_cliente_ajeno_no_acepta_ni_rechaza(self):
        self.con_presupuesto()
        with self.assertRaises(Prohibido):
            services.aceptar_presupuesto(self.auto, self.u_otro)
        with self.assertRaises(Prohibido):
            services.rechazar_presupuesto(self.auto, self.u_otro)

    def test_cliente_ajeno_no_cancela(self):
        s = self.crear()
        with self.assertRaises(Prohibido):
            services.cancelar_solicitud(s, self.u_otro)
        self.assertEqual(self.estados(s)[0], EstadoSolicitud.PENDIENTE)

    def test_jefe_no_asigna_mecanico_ajeno(self):
        s = self.crear()
        with self.assertRaises(Prohibido):
            services.asignar_mecanico(s, self.u_jefe, self.mecanico2)
        self.assertEqual(self.estados(s), (EstadoSolicitud.PENDIENTE, EstadoAuto.PENDIENTE))

    def test_jefe_no_asigna_solicitud_de_otro_jefe(self):
        s = self.crear(mecanico_preferido=self.mecanico2)
        with self.assertRaises(Prohibido):
            services.asignar_mecanico(s, self.u_jefe, self.mecanico)

    def test_admin_asigna_sin_restriccion(self):
        s = self.crear()
        services.asignar_mecanico(s, self.admin, self.mecanico2)
        self.assertEqual(self.estados(s)[0], EstadoSolicitud.ASIGNADA)

    def test_mecanico_no_asignado_no_presupuesta(self):
        s = self.asignada()
        with self.assertRaises(Prohibido):
            services.enviar_presupuesto(s, self.u_mecanico2, "x", Decimal("1"))

    def test_notificacion_fallida_no_revierte(self):
        """Un despachador que explota no deshace la transición ya confirmada."""
        s = self.crear()
        with mock.patch(
            "notificaciones.despachador.Notificador._enviar_cambio_estado",
            side_effect=RuntimeError("smtp caído"),
        ):
            with self.captureOnCommitCallbacks(execute=True):
                services.asignar_mecanico(s, self.u_jefe, self.mecanico)
        self.assertEqual(self.estados(s), (EstadoSolicitud.ASIGNADA, EstadoAuto.EN_REVISION))


class SolicitudesApiTests(BaseSolicitudTestCase):
    def enviar(self, metodo, url, data, user):
        self.client.force_login(user)
        return getattr(self.client, metodo)(url, json.dumps(data), content_type="application/json")

    def test_flujo_por_api(self):
        r = self.enviar("post", "/api/requests/", {
            "carId": self.auto.id, "description": "Frenos", "preferredMechanicId": self.mecanico.id,
        }, self.u_cliente)
        self.assertEqual(r.status_code, 201, r.content)
        sid = r.json()["data"]["id"]
        self.assertEqual(r.json()["data"]["status"], "PENDING")

        r = self.enviar("put", f"/api/requests/{sid}/assign/", {"mechanicId": self.mecanico.id}, self.u_jefe)
        self.assertEqual(r.status_code, 200, r.content)

        r = self.enviar("post", f"/api/requests/{sid}/budget/",
                        {"description": "Pastillas", "cost": 150}, self.u_mecanico)
        self.assertEqual(r.status_code, 200, r.content)
        self.assertEqual(r.json()["data"]["status"], "PRESUPUESTO_ENVIADO")

        r = self.enviar("post", "/api/car-states/accept-budget/", {"carId": self.auto.id}, self.u_cliente)
        self.assertEqual(r.status_code, 200, r.content)
        self.assertEqual(r.json()["data"]["car"]["statusId"], EstadoAuto.EN_REPARACION)

        r = self.enviar("put", f"/api/requests/{sid}/status/", {"status": "COMPLETED"}, self.u_mecanico)
        self.assertEqual(r.status_code, 200, r.content)
        self.assertIsNotNone(r.json()["data"]["repairId"])

    def test_asignar_mecanico_ajeno_403(self):
        s = self.crear()
        r = self.enviar("put", f"/api/requests/{s.id}/assign/", {"mechanicId": self.mecanico2.id}, self.u_jefe)
        self.assertEqual(r.status_code, 403)

    def test_sin_jefes_409(self):
        Jefe.objects.all().delete()
        r = self.enviar("post", "/api/requests/", {"carId": self.auto.id, "description": "x"}, self.u_cliente)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()["error"], "no_boss_available")

    def test_listado_por_jefe(self):
        self.crear()
        self.client.force_login(self.u_jefe)
        r = self.client.get(f"/api/requests/boss/{self.jefe.id}/")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(len(r.json()["data"]), 1)
        r = self.client.get(f"/api/requests/boss/{self.jefe2.id}/")
        self.assertEqual(r.status_code, 403)

    def test_listado_por_cliente_ajeno(self):
        self.client.force_login(self.u_otro)
        r = self.client.get(f"/api/requests/client/{self.cliente.id}/")
        self.assertEqual(r.status_code, 403)
