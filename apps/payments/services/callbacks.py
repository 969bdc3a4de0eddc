"""
Gateway callback parsing.

Gateways disagree on field names, so the reference is looked up in a fixed
order of candidate keys, first at the top level and then under a nested
``transaction`` object. Statuses are folded into completed/failed/pending;
anything else is ``unknown``.
"""
import hashlib
import hmac
import json

REFERENCE_FIELDS = (
    'transaction_id',
    'reference',
    'transaction_reference',
    'id',
    'payment_reference',
    'checkout_request_id',
    'merchant_reference',
)

STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'
STATUS_PENDING = 'pending'
STATUS_UNKNOWN = 'unknown'

STATUS_MAP = {
    'completed': STATUS_COMPLETED,
    'success': STATUS_COMPLETED,
    'successful': STATUS_COMPLETED,
    'paid': STATUS_COMPLETED,
    'confirmed': STATUS_COMPLETED,
    'failed': STATUS_FAILED,
    'error': STATUS_FAILED,
    'rejected': STATUS_FAILED,
    'cancelled': STATUS_FAILED,
    'pending': STATUS_PENDING,
    'processing': STATUS_PENDING,
    'initiated': STATUS_PENDING,
}


def _nested(payload):
    nested = payload.get('transaction')
    return nested if isinstance(nested, dict) else {}


def extract_references(payload):
    """
    All non-empty candidate references in lookup order, without duplicates.

    Top-level fields are tried before the nested ``transaction`` object.
    """
    if not isinstance(payload, dict):
        return []
    references = []
    for source in (payload, _nested(payload)):
        for field_name in REFERENCE_FIELDS:
            value = source.get(field_name)
            if value in (None, '') or isinstance(value, (dict, list)):
                continue
            value = str(value)
            if value not in references:
                references.append(value)
    return references


def extract_reference(payload):
    """Return the first reference found in ``payload``, or None."""
    references = extract_references(payload)
    return references[0] if references else None


def extract_status(payload):
    if not isinstance(payload, dict):
        return None
    status = payload.get('status')
    if status in (None, ''):
        status = _nested(payload).get('status')
    return status


def map_status(raw_status):
    """Map a gateway status string onto completed/failed/pending/unknown."""
    if raw_status is None:
        return STATUS_UNKNOWN
    return STATUS_MAP.get(str(raw_status).strip().lower(), STATUS_UNKNOWN)


def canonical_body(payload):
    """Serialise ``payload`` without its ``signature`` for signing."""
    unsigned = {key: value for key, value in payload.items() if key != 'signature'}
    return json.dumps(unsigned, sort_keys=True, separators=(',', ':'), default=str)


def compute_signature(payload, secret):
    return hmac.new(
        secret.encode('utf-8'),
        canonical_body(payload).encode('utf-8'),
        hashlib.sha256
    ).hexdigest()


def verify_signature(payload, secret):
    """
    Check the HMAC-SHA256 ``signature`` carried in ``payload``.

    Returns False when there is no signature or no secret to check it with.
    """
    signature = payload.get('signature') if isinstance(payload, dict) else None
    if not signature or not secret:
        return False
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected, str(signature))
