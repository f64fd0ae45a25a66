"""
URL configuration for rental project.

Every app mounts its JSON API under ``api/``; Swagger UI lives at ``docs/``.
"""
from django.conf import settings
from django.contrib import admin
from django.urls import path, include
from django.conf.urls.static import static

from rest_framework import permissions
from rest_framework.authentication import SessionAuthentication

from drf_yasg import openapi
from drf_yasg.views import get_schema_view as get_swagger_schema_view

schema_view = get_swagger_schema_view(
    openapi.Info(
        title="Rental API",
        default_version="1.0.0",
        description="API documentation for the rental listing marketplace"
    ),
    public=True,
    permission_classes=[permissions.AllowAny],
    authentication_classes=[
        SessionAuthentication
    ]
)


urlpatterns = [
    path('admin/', admin.site.urls),
    path("", include("people.urls")),
    path("", include("listing.urls")),
    path("", include("message.urls")),
    path("docs/", schema_view.with_ui("swagger", cache_timeout=10), name="docs"),
] + static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
