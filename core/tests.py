import json
from io import StringIO

from django.contrib.auth.models import User
from django.core.cache import cache
from django.core.management import call_command
from django.core.management.base import CommandError
from django.http import JsonResponse
from django.test import TestCase, RequestFactory, override_settings

from core.api import api_view, decimal_no_negativo, entero, leer_json
from core.auth import exigir_rol, rol_de, tiene_rol
from core.cache import cache_get, clave_cache, invalidar_namespace, version_namespace
from core.errors import EstadoInvalido, ErrorValidacion, Prohibido
from core.models import AuditLog, Cliente, Mecanico, Perfil
from core.roles import Rol, normalizar_rol
from core.testing import crear_usuario
from notificaciones.models import TrabajoEmail, TipoTrabajo


class RolesTests(TestCase):
    def test_normalizar_rol(self):
        """Mayúsculas y tildes no cambian el rol."""
        for crudo in ("Mecánico", "MECANICO", "mecanico", " MecÁnico "):
            self.assertEqual(normalizar_rol(crudo), "mecanico")
        self.assertEqual(normalizar_rol(None), "")
        self.assertEqual(normalizar_rol(""), "")

    def test_compuerta(self):
        user, _ = crear_usuario("meca", Rol.MECANICO)
        self.assertEqual(rol_de(user), "mecanico")
        self.assertTrue(tiene_rol(user, "admin", "Mecánico"))
        self.assertFalse(tiene_rol(user, "admin", "jefe"))
        exigir_rol(user, "mecanico")
        with self.assertRaises(Prohibido):
            exigir_rol(user, "admin", "recepcionista")

    def test_sin_rol_resoluble(self):
        user = User.objects.create_user(username="sinperfil", password="x")
        Perfil.objects.filter(user=user).update(rol="")
        user = User.objects.get(pk=user.pk)
        self.assertFalse(tiene_rol(user, "cliente"))
        with self.assertRaises(Prohibido):
            exigir_rol(user, "cliente")

    def test_perfil_por_senal(self):
        user = User.objects.create_user(username="nuevo", password="x")
        self.assertEqual(Perfil.objects.get(user=user).rol, Rol.CLIENTE)


class ApiHelpersTests(TestCase):
    def setUp(self):
        self.rf = RequestFactory()
        self.user, _ = crear_usuario("admin1", Rol.ADMIN)

    def request(self, metodo="get", body=None):
        req = getattr(self.rf, metodo)("/api/prueba/", data=body or "", content_type="application/json")
        req.user = self.user
        return req

    def test_error_de_dominio_estructurado(self):
        @api_view("POST")
        def vista(request):
            raise EstadoInvalido("No se puede")

        r = vista(self.request("post"))
        self.assertEqual(r.status_code, 409)
        self.assertEqual(json.loads(r.content), {
            "success": False, "error": "invalid_state", "message": "No se puede",
        })

    def test_error_inesperado_opaco(self):
        @api_view("GET")
        def vista(request):
            raise KeyError("detalle interno de la base")

        with self.assertLogs("core.api", level="ERROR"):
            r = vista(self.request())
        body = json.loads(r.content)
        self.assertEqual(r.status_code, 500)
        self.assertEqual(body["error"], "internal_error")
        self.assertNotIn("detalle", body["message"])

    def test_metodo_no_permitido(self):
        @api_view("POST")
        def vista(request):
            return JsonResponse({})

        self.assertEqual(vista(self.request()).status_code, 405)

    def test_leer_json_invalido(self):
        req = self.rf.post("/api/prueba/", data="{no json", content_type="application/json")
        with self.assertRaises(ErrorValidacion):
            leer_json(req)

    def test_validadores_numericos(self):
        self.assertEqual(entero({"id": "7"}, "id"), 7)
        with self.assertRaises(ErrorValidacion):
            entero({"id": 0}, "id")
        with self.assertRaises(ErrorValidacion):
            entero({}, "id")
        self.assertEqual(entero({"id": 3.0}, "id"), 3)
        for malo in (1.5, "1.5", True):
            with self.assertRaises(ErrorValidacion):
                entero({"id": malo}, "id")

        self.assertEqual(str(decimal_no_negativo({"c": 150}, "c")), "150.00")
        self.assertEqual(str(decimal_no_negativo({"c": "9999999999.99"}, "c")), "9999999999.99")
        for malo in (-1, "abc", "NaN", "1e100", "10000000000", "9999999999.999"):
            with self.assertRaises(ErrorValidacion):
                decimal_no_negativo({"c": malo}, "c")

    def test_costo_fuera_de_rango_es_400(self):
        """Un monto enorme se informa como error de validación, no como error interno."""
        @api_view("POST")
        def vista(request):
            return JsonResponse({"cost": str(decimal_no_negativo(leer_json(request), "cost"))})

        r = vista(self.request("post", json.dumps({"cost": "1e100"})))
        self.assertEqual(r.status_code, 400)
        self.assertEqual(json.loads(r.content)["error"], "validation_error")


class CacheTests(TestCase):
    def setUp(self):
        cache.clear()
        self.rf = RequestFactory()
        self.admin, _ = crear_usuario("admin1", Rol.ADMIN)
        self.u_mec, _ = crear_usuario("meca", Rol.MECANICO)
        self.llamadas = 0

        @cache_get("prueba")
        def vista(request):
            self.llamadas += 1
            return JsonResponse({"success": True, "data": self.llamadas})

        self.vista = vista

    def get(self, user, path="/api/repairs/"):
        req = self.rf.get(path)
        req.user = user
        return json.loads(self.vista(req).content)["data"]

    def test_lectura_cacheada_e_invalidacion(self):
        self.assertEqual(self.get(self.admin), 1)
        self.assertEqual(self.get(self.admin), 1)
        invalidar_namespace("prueba")
        self.assertEqual(self.get(self.admin), 2)

    def test_clave_por_identidad_y_query(self):
        self.get(self.admin)
        self.get(self.u_mec)
        self.get(self.admin, "/api/repairs/?search=abc")
        self.assertEqual(self.llamadas, 3)

        req_a = self.rf.get("/api/repairs/")
        req_a.user = self.admin
        req_b = self.rf.get("/api/repairs/")
        req_b.user = self.u_mec
        self.assertNotEqual(clave_cache(req_a, "prueba"), clave_cache(req_b, "prueba"))

    def test_invalidar_sin_version_previa(self):
        invalidar_namespace("vacio")
        self.assertEqual(version_namespace("vacio"), 2)

    @override_settings(CACHE_TTL_SECONDS=0)
    def test_ttl_configurable(self):
        self.get(self.admin)
        self.get(self.admin)
        self.assertEqual(self.llamadas, 2)


class AuthApiTests(TestCase):
    def setUp(self):
        self.user, _ = crear_usuario("cliente1", Rol.CLIENTE)

    def login(self, password):
        return self.client.post(
            "/api/auth/login/",
            json.dumps({"username": "cliente1", "password": password}),
            content_type="application/json",
        )

    def test_login_encola_confirmacion(self):
        r = self.login("test123")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["data"]["role"], Rol.CLIENTE)
        self.assertTrue(TrabajoEmail.objects.filter(tipo=TipoTrabajo.REGISTRO_SESION).exists())
        self.assertTrue(AuditLog.objects.filter(app="AUTH", action="LOGIN").exists())

        r = self.client.get("/api/auth/me/")
        self.assertEqual(r.json()["data"]["clientId"], self.user.cliente.id)

    def test_login_invalido(self):
        r = self.login("mala")
        self.assertEqual(r.status_code, 401)
        self.assertFalse(TrabajoEmail.objects.exists())

    def test_logout(self):
        self.login("test123")
        r = self.client.post("/api/auth/logout/")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(self.client.get("/api/auth/me/").status_code, 401)

    def test_healthcheck(self):
        self.assertEqual(self.client.get("/api/health/").status_code, 200)


class RestablecerClaveTests(TestCase):
    def setUp(self):
        self.user, _ = crear_usuario("cliente1", Rol.CLIENTE)

    def post(self, url, data):
        return self.client.post(url, json.dumps(data), content_type="application/json")

    def pedir(self, email="cliente1@taller.test"):
        r = self.post("/api/auth/forgot-password/", {"email": email})
        self.assertEqual(r.status_code, 200)
        return r

    def test_email_desconocido_no_revela_nada(self):
        r = self.pedir("nadie@taller.test")
        self.assertTrue(r.json()["success"])
        self.assertFalse(TrabajoEmail.objects.exists())

    def test_email_invalido(self):
        r = self.post("/api/auth/forgot-password/", {"email": "no-es-email"})
        self.assertEqual(r.status_code, 400)

    def test_flujo_completo(self):
        """El token del email cambia la contraseña una sola vez."""
        self.pedir("CLIENTE1@taller.test")
        payload = TrabajoEmail.objects.get(tipo=TipoTrabajo.RESTABLECER_CLAVE).payload
        datos = {"uid": payload["uid"], "token": payload["token"], "newPassword": "Frenos-Nuevos-2026"}

        r = self.post("/api/auth/reset-password/", datos)
        self.assertEqual(r.status_code, 200, r.content)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("Frenos-Nuevos-2026"))
        self.assertTrue(AuditLog.objects.filter(app="AUTH", action="PASSWORD_RESET").exists())

        r = self.post("/api/auth/reset-password/", {**datos, "newPassword": "Otra-Clave-Larga-99"})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["error"], "validation_error")

    def test_token_invalido_y_clave_debil(self):
        self.pedir()
        payload = TrabajoEmail.objects.get().payload

        r = self.post("/api/auth/reset-password/", {"uid": payload["uid"], "token": "x-y", "newPassword": "Frenos-Nuevos-2026"})
        self.assertEqual(r.status_code, 400)
        r = self.post("/api/auth/reset-password/", {"uid": "!!", "token": payload["token"], "newPassword": "Frenos-Nuevos-2026"})
        self.assertEqual(r.status_code, 400)

        r = self.post("/api/auth/reset-password/", {"uid": payload["uid"], "token": payload["token"], "newPassword": "123"})
        self.assertEqual(r.status_code, 400)
        self.assertIn("newPassword", r.json()["data"])
        self.assertTrue(self.user.check_password("test123"))


class SetRoleCommandTests(TestCase):
    def test_asigna_mecanico_con_jefe(self):
        _, jefe = crear_usuario("jefe1", Rol.JEFE)
        User.objects.create_user(username="pepe", password="x")
        out = StringIO()
        call_command("set_role", "pepe", Rol.MECANICO, "--jefe", str(jefe.id), stdout=out)

        mec = Mecanico.objects.get(user__username="pepe")
        self.assertEqual(mec.jefe, jefe)
        self.assertEqual(Perfil.objects.get(user__username="pepe").rol, Rol.MECANICO)
        self.assertIn("MECANICO", out.getvalue())

    def test_asigna_cliente_y_da_bienvenida(self):
        User.objects.create_user(username="ana", password="x", email="ana@taller.test")
        call_command("set_role", "ana", Rol.CLIENTE, stdout=StringIO())
        self.assertTrue(Cliente.objects.filter(user__username="ana").exists())
        trabajo = TrabajoEmail.objects.get(tipo=TipoTrabajo.BIENVENIDA)
        self.assertEqual(trabajo.payload["email"], "ana@taller.test")

    def test_usuario_inexistente(self):
        with self.assertRaises(CommandError):
            call_command("set_role", "nadie", Rol.ADMIN, stdout=StringIO())
