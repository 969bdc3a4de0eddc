"""
URL configuration for voucher export endpoints.
"""
from django.urls import path
from apps.vouchers.views import VoucherListView, VoucherDetailView

urlpatterns = [
    path('', VoucherListView.as_view(), name='voucher-list'),
    path('<str:code>', VoucherDetailView.as_view(), name='voucher-detail'),
]
