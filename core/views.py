from django.contrib.auth import authenticate, login, logout
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt

from django.core.exceptions import ValidationError
from django.core.validators import validate_email

from .api import api_view, leer_json, ok, texto
from .auth import rol_de
from .errors import ErrorValidacion, NoAutenticado
from .services import restablecer_clave, solicitar_restablecimiento


def usuario_a_dict(user):
    perfil = getattr(user, "perfil", None)
    return {
        "id": user.id,
        "username": user.username,
        "name": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
        "role": getattr(perfil, "rol", None),
        "roleName": perfil.get_rol_display() if perfil else None,
        "clientId": getattr(getattr(user, "cliente", None), "id", None),
        "mechanicId": getattr(getattr(user, "mecanico", None), "id", None),
        "bossId": getattr(getattr(user, "jefe", None), "id", None),
    }


@api_view("GET", login=False)
def healthcheck(request):
    return ok({"timestamp": timezone.now().isoformat()}, "Taller API funcionando correctamente")


@csrf_exempt
@api_view("POST", login=False)
def login_api(request):
    data = leer_json(request)
    user = authenticate(request, username=texto(data, "username"), password=texto(data, "password"))
    if user is None or not user.is_active:
        raise NoAutenticado("Credenciales inválidas")
    login(request, user)
    return ok(usuario_a_dict(user), "Sesión iniciada")


@api_view("POST")
def logout_api(request):
    logout(request)
    return ok(None, "Sesión cerrada correctamente.")


@api_view("GET")
def me_api(request):
    data = usuario_a_dict(request.user)
    data["normalizedRole"] = rol_de(request.user)
    return ok(data)


@csrf_exempt
@api_view("POST", login=False)
def olvide_clave(request):
    email = texto(leer_json(request), "email")
    try:
        validate_email(email)
    except ValidationError:
        raise ErrorValidacion("Email inválido", datos={"email": ["Email inválido"]})
    solicitar_restablecimiento(email)
    return ok(None, "Si el email está registrado, recibirás un enlace para restablecer tu contraseña")


@csrf_exempt
@api_view("POST", login=False)
def restablecer(request):
    data = leer_json(request)
    restablecer_clave(texto(data, "uid"), texto(data, "token"), texto(data, "newPassword"))
    return ok(None, "Contraseña restablecida exitosamente")
