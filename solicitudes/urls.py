from django.urls import path
from . import views

urlpatterns = [
    path("requests/", views.crear, name="solicitud_crear"),
    path("requests/<int:solicitud_id>/", views.detalle, name="solicitud_detalle"),
    path("requests/boss/<int:jefe_id_url>/", views.de_jefe, name="solicitudes_jefe"),
    path("requests/mechanic/<int:mecanico_id_url>/", views.de_mecanico, name="solicitudes_mecanico"),
    path("requests/client/<int:cliente_id>/", views.de_cliente, name="solicitudes_cliente"),
    path("requests/<int:solicitud_id>/assign/", views.asignar, name="solicitud_asignar"),
    path("requests/<int:solicitud_id>/status/", views.actualizar_estado, name="solicitud_estado"),
    path("requests/<int:solicitud_id>/budget/", views.presupuesto, name="solicitud_presupuesto"),
    path("requests/<int:solicitud_id>/cancel/", views.cancelar, name="solicitud_cancelar"),
]
