"""
URL configuration for payment API endpoints.
"""
from django.urls import path
from apps.payments.views import (
    PaymentListView,
    PaymentDetailView,
    PaymentVerifyView,
    PaymentSettleView,
)

urlpatterns = [
    path('', PaymentListView.as_view(), name='payment-list'),
    path('<str:transaction_id>', PaymentDetailView.as_view(), name='payment-detail'),
    path('<str:transaction_id>/verify', PaymentVerifyView.as_view(), name='payment-verify'),
    path('<str:transaction_id>/settle', PaymentSettleView.as_view(), name='payment-settle'),
]
