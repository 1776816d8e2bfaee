from django.urls import path
from . import views

urlpatterns = [
    path("email/test/", views.email_prueba, name="email_prueba"),
]
