from django.urls import path
from . import views

urlpatterns = [
    path("payments/create-preference/", views.crear_preferencia, name="pago_crear_preferencia"),
    path("payments/pending/<int:reparacion_id>/", views.pendiente, name="pago_pendiente"),
    path("payments/cancel-pending/<int:pago_id>/", views.cancelar_pendiente, name="pago_cancelar"),
    path("payments/<int:pago_id>/confirm/", views.confirmar, name="pago_confirmar"),
    path("payments/webhook/", views.webhook, name="pago_webhook"),
]
