from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("core.urls")),
    path("api/", include("taller.urls")),
    path("api/", include("solicitudes.urls")),
    path("api/", include("pagos.urls")),
    path("api/", include("notificaciones.urls")),
]
