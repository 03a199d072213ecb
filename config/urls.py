"""
URL configuration for the Federation Policy Engine.

Everything federation-scoped lives under ``/v1/federations/<uuid>/``;
health and the event-type catalogue are public.
"""
from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    path('admin/', admin.site.urls),
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('v1/', include('apps.core.urls')),
    path('v1/', include('apps.policy.urls')),
]
