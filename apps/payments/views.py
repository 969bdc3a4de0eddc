"""
Payment API views.

Tenant endpoints read ``request.scope`` (set by TenantContextMiddleware)
and pass it into every service call. The gateway callback endpoint is
public; it authenticates the payload signature instead.
"""
import logging
import time

from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema, OpenApiParameter
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.logging import PIIMasker
from apps.core.permissions import HasTenantScope
from apps.integrations.models import WebhookLog
from apps.payments.models import Payment
from apps.payments.serializers import (
    PaymentInitiateSerializer,
    PaymentResultSerializer,
    PaymentSerializer,
    SettlementOutcomeSerializer,
)
from apps.payments.services import (
    AlreadySettled,
    InvalidCallbackSignature,
    MalformedCallback,
    PaymentNotFound,
    PaymentService,
    Settled,
    SettlementService,
    ValidationFailed,
)
from apps.payments.services import callbacks
from apps.payments.services.mpesa_service import MpesaGateway

logger = logging.getLogger(__name__)


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


def _client_ip(request):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


class PaymentListView(APIView):
    """
    List and initiate payments.

    GET /v1/payments - List payments visible to the caller
    POST /v1/payments - Start a mobile-money payment
    """
    permission_classes = [HasTenantScope]

    @extend_schema(
        summary="List payments",
        parameters=[
            OpenApiParameter(
                name='status',
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                enum=['pending', 'completed', 'failed']
            ),
            OpenApiParameter(name='phone', type=OpenApiTypes.STR, location=OpenApiParameter.QUERY),
        ],
        responses={200: PaymentSerializer(many=True)}
    )
    def get(self, request):
        queryset = Payment.objects.for_scope(request.scope).order_by('-created_at')

        status_filter = request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        phone = request.query_params.get('phone')
        if phone:
            queryset = queryset.filter(phone=PaymentService.normalize_phone(phone))

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = PaymentSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    @extend_schema(
        summary="Initiate payment",
        description="Create a pending payment and ask the gateway to collect it",
        request=PaymentInitiateSerializer,
        responses={
            201: PaymentResultSerializer,
            400: {'description': 'Invalid amount, currency, phone or package'},
            502: {'description': 'Gateway unavailable; the payment stays pending'},
        }
    )
    @method_decorator(ratelimit(key='header:x-tenant-id', rate='30/m', method='POST'))
    def post(self, request):
        serializer = PaymentInitiateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = PaymentService.initiate(
            request.scope,
            amount=data['amount'],
            phone=data['phone'],
            package=data['package'],
            currency=data.get('currency'),
            customer_name=data.get('customer_name', ''),
            description=data.get('description', ''),
            metadata=data.get('metadata'),
        )
        return Response(PaymentResultSerializer(result).data, status=status.HTTP_201_CREATED)


class PaymentDetailView(APIView):
    """
    GET /v1/payments/{transaction_id} - Stored payment status
    """
    permission_classes = [HasTenantScope]

    @extend_schema(summary="Get payment", responses={200: PaymentSerializer})
    def get(self, request, transaction_id):
        payment = PaymentService.get_payment(request.scope, transaction_id)
        return Response(PaymentSerializer(payment).data)


class PaymentVerifyView(APIView):
    """
    POST /v1/payments/{transaction_id}/verify - Poll the gateway now
    """
    permission_classes = [HasTenantScope]

    @extend_schema(
        summary="Verify payment",
        description="Ask the gateway for the current status and apply it",
        request=None,
        responses={200: PaymentResultSerializer}
    )
    @method_decorator(ratelimit(key='header:x-tenant-id', rate='60/m', method='POST'))
    def post(self, request, transaction_id):
        result = PaymentService.verify(request.scope, transaction_id)
        return Response(PaymentResultSerializer(result).data)


class PaymentSettleView(APIView):
    """
    POST /v1/payments/{transaction_id}/settle - Retry voucher issuance

    Idempotent: a settled payment reports ``already_settled``.
    """
    permission_classes = [HasTenantScope]

    @extend_schema(summary="Settle payment", request=None, responses={200: SettlementOutcomeSerializer})
    def post(self, request, transaction_id):
        payment = PaymentService.get_payment(request.scope, transaction_id)
        outcome = SettlementService.settle(payment)

        voucher = getattr(outcome, 'voucher', None)
        if isinstance(outcome, Settled):
            name = 'settled'
        elif isinstance(outcome, AlreadySettled):
            name = 'already_settled'
        elif isinstance(outcome, ValidationFailed):
            name = 'validation_failed'
        else:
            name = 'storage_failure'

        data = {
            'outcome': name,
            'ok': outcome.ok,
            'voucher_code': voucher.code if voucher else None,
            'reason': getattr(outcome, 'reason', '') or '',
        }
        response_status = status.HTTP_200_OK
        if isinstance(outcome, ValidationFailed):
            response_status = status.HTTP_409_CONFLICT
        elif not outcome.ok:
            response_status = status.HTTP_503_SERVICE_UNAVAILABLE
        return Response(SettlementOutcomeSerializer(data).data, status=response_status)


class PaymentCallbackView(APIView):
    """
    Gateway payment notifications.

    POST /v1/webhooks/payments/{provider}

    Public endpoint. Every delivery is recorded in WebhookLog. Non-2xx
    responses make the gateway re-deliver, so only genuinely unprocessable
    callbacks get one.
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        summary="Payment gateway callback",
        request={'application/json': {'type': 'object'}},
        responses={
            200: {'description': 'Processed, duplicate or ignored'},
            400: {'description': 'Malformed payload'},
            401: {'description': 'Invalid signature'},
            404: {'description': 'Unknown payment reference'},
        }
    )
    def post(self, request, provider):
        start_time = time.monotonic()
        payload = request.data
        if provider == MpesaGateway.name:
            payload = MpesaGateway.normalize_callback(payload)

        ip_address = _client_ip(request)
        webhook_log = WebhookLog.objects.create(
            provider=provider if provider in dict(WebhookLog.PROVIDER_CHOICES) else 'other',
            event=str(callbacks.extract_status(payload) or 'unknown')[:100],
            payload=PIIMasker.mask_dict(payload) if isinstance(payload, dict) else {'raw': str(payload)},
            reference=(callbacks.extract_reference(payload) or '')[:128],
            ip_address=ip_address,
            user_agent=request.META.get('HTTP_USER_AGENT', ''),
            request_id=(getattr(request, 'request_id', None) or '')[:64] or None,
        )

        def elapsed_ms():
            return int((time.monotonic() - start_time) * 1000)

        try:
            result = PaymentService.handle_callback(payload, provider=provider, ip_address=ip_address)
        except InvalidCallbackSignature as e:
            webhook_log.mark_unauthorized(e.message)
            return Response({'error': e.message}, status=status.HTTP_401_UNAUTHORIZED)
        except MalformedCallback as e:
            webhook_log.mark_error(e.message, processing_time_ms=elapsed_ms())
            return Response({'error': e.message}, status=status.HTTP_400_BAD_REQUEST)
        except PaymentNotFound as e:
            webhook_log.mark_error(e.message, processing_time_ms=elapsed_ms())
            return Response({'error': e.message}, status=status.HTTP_404_NOT_FOUND)
        except Exception as e:
            webhook_log.mark_error(str(e), processing_time_ms=elapsed_ms())
            logger.error(
                f"Unexpected error processing payment callback: {str(e)}",
                exc_info=True,
                extra={'webhook_id': str(webhook_log.id), 'provider': provider}
            )
            return Response({'error': 'Internal server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        tenant_id = result.payment.tenant_id
        if result.outcome == 'ignored':
            webhook_log.mark_ignored(tenant_id=tenant_id, processing_time_ms=elapsed_ms())
        else:
            webhook_log.mark_success(outcome=result.outcome, tenant_id=tenant_id, processing_time_ms=elapsed_ms())

        return Response({
            'transaction_id': result.payment.transaction_id,
            'status': result.payment.status,
            'outcome': result.outcome,
        }, status=status.HTTP_200_OK)
