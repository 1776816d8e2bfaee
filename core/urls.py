from django.urls import path
from . import views

urlpatterns = [
    path("health/", views.healthcheck, name="healthcheck"),
    path("auth/login/", views.login_api, name="api_login"),
    path("auth/logout/", views.logout_api, name="api_logout"),
    path("auth/me/", views.me_api, name="api_me"),
    path("auth/forgot-password/", views.olvide_clave, name="api_olvide_clave"),
    path("auth/reset-password/", views.restablecer, name="api_restablecer"),
]
