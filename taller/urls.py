from django.urls import path
from . import views

urlpatterns = [
    # autos
    path("cars/", views.autos, name="autos"),
    path("cars/<int:auto_id>/", views.auto_detalle, name="auto_detalle"),
    path("cars/plate/<str:patente>/", views.auto_por_patente, name="auto_por_patente"),
    path("cars/client/<int:cliente_id>/", views.autos_de_cliente, name="autos_cliente"),

    # estados del auto
    path("car-states/statuses/", views.estados, name="auto_estados"),
    path("car-states/transition/", views.transicion, name="auto_transicion"),
    path("car-states/accept-budget/", views.aceptar_presupuesto, name="auto_aceptar_presupuesto"),
    path("car-states/reject-budget/", views.rechazar_presupuesto, name="auto_rechazar_presupuesto"),
    path("car-states/finish-repair/", views.finalizar_reparacion, name="auto_finalizar_reparacion"),
    path("car-states/deliver-car/", views.entregar_auto, name="auto_entregar"),

    # reparaciones
    path("repairs/", views.reparaciones, name="reparaciones"),
    path("repairs/<int:reparacion_id>/", views.reparacion_detalle, name="reparacion_detalle"),
    path("repairs/car/<int:auto_id>/", views.reparaciones_de_auto, name="reparaciones_auto"),
    path("repairs/mechanic/<int:mecanico_id_url>/", views.reparaciones_de_mecanico, name="reparaciones_mecanico"),
]
