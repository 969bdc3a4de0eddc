"""
Voucher export views (read-only, tenant-scoped).
"""
import logging

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema, OpenApiParameter
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.permissions import HasTenantScope
from apps.payments.views import StandardResultsSetPagination
from apps.vouchers.models import Voucher
from apps.vouchers.serializers import VoucherSerializer
from apps.vouchers.services import VoucherService

logger = logging.getLogger(__name__)


class VoucherListView(APIView):
    """
    GET /v1/vouchers - List vouchers visible to the caller
    """
    permission_classes = [HasTenantScope]

    @extend_schema(
        summary="List vouchers",
        parameters=[
            OpenApiParameter(
                name='status',
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                enum=[choice for choice, _ in Voucher.STATUS_CHOICES]
            ),
            OpenApiParameter(name='package', type=OpenApiTypes.STR, location=OpenApiParameter.QUERY),
            OpenApiParameter(
                name='unsynced',
                type=OpenApiTypes.BOOL,
                location=OpenApiParameter.QUERY,
                description='Only vouchers never pushed to the router'
            ),
        ],
        responses={200: VoucherSerializer(many=True)}
    )
    def get(self, request):
        queryset = (
            Voucher.objects.for_scope(request.scope)
            .select_related('customer', 'payment')
            .order_by('-created_at')
        )

        status_filter = request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        package = request.query_params.get('package')
        if package:
            queryset = queryset.filter(package=package)

        if request.query_params.get('unsynced') in ('1', 'true', 'True'):
            queryset = queryset.filter(router_synced_at__isnull=True)

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        return paginator.get_paginated_response(VoucherSerializer(page, many=True).data)


class VoucherDetailView(APIView):
    """
    GET /v1/vouchers/{code} - One voucher by code
    """
    permission_classes = [HasTenantScope]

    @extend_schema(summary="Get voucher", responses={200: VoucherSerializer})
    def get(self, request, code):
        voucher = VoucherService.get_by_code(request.scope, code)
        return Response(VoucherSerializer(voucher).data)
