from core.api import api_view, leer_json, ok, texto
from core.auth import require_admin
from core.errors import ErrorValidacion

from .cola import encolar
from .models import TipoTrabajo


@api_view("POST")
@require_admin
def email_prueba(request):
    data = leer_json(request)
    email = texto(data, "email", requerido=False) or request.user.email
    if not email:
        raise ErrorValidacion("email es requerido", datos={"email": ["Requerido"]})
    trabajo = encolar(TipoTrabajo.PRUEBA, {"email": email})
    return ok({"jobId": trabajo.id, "email": email}, "Email de prueba encolado", status=202)
