"""
URL configuration for the hotspot billing platform.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # API v1
    path('v1/', include('apps.core.urls')),
    path('v1/payments/', include('apps.payments.urls')),
    path('v1/vouchers/', include('apps.vouchers.urls')),

    # Gateway callbacks (public, signature verified)
    path('v1/webhooks/', include('apps.payments.urls_webhooks')),
]
