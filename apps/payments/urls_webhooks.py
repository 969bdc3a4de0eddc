"""
URL configuration for gateway callbacks (public).
"""
from django.urls import path
from apps.payments.views import PaymentCallbackView

urlpatterns = [
    path('payments/<str:provider>', PaymentCallbackView.as_view(), name='payment-callback'),
]
