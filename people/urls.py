from django.urls import path

from .views import register, login_view, logout_view, me

urlpatterns = [
    path("api/auth/register", register, name="register"),
    path("api/auth/login", login_view, name="login"),
    path("api/auth/logout", logout_view, name="logout"),
    path("api/auth/me", me, name="me"),
]
