"""
Django settings for the hotspot billing platform.
"""
import os
from pathlib import Path
import environ
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.celery import CeleryIntegration
from kombu import Queue, Exchange

# Build paths inside the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Initialize environment variables
env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, []),
    DB_CONN_MAX_AGE=(int, 600),
    RATE_LIMIT_ENABLED=(bool, True),
    JSON_LOGS=(bool, False),
    LOG_LEVEL=(str, 'INFO'),
)

# Read .env file if it exists
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env('SECRET_KEY', default='django-insecure-change-me')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = env('DEBUG')

ALLOWED_HOSTS = env('ALLOWED_HOSTS')

USE_X_FORWARDED_HOST = True
SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')

# Application definition
INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',

    # Third-party apps
    'rest_framework',
    'drf_spectacular',
    'corsheaders',
    'django_ratelimit',

    # Billing apps
    'apps.core',
    'apps.tenants',
    'apps.payments',
    'apps.vouchers',
    'apps.routers',
    'apps.integrations',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',

    # Custom middleware
    'apps.tenants.middleware.TenantContextMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
DATABASES = {
    'default': env.db('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}
DATABASES['default']['CONN_MAX_AGE'] = env('DB_CONN_MAX_AGE')

# Configure based on database engine
if 'postgresql' in DATABASES['default']['ENGINE']:
    DATABASES['default']['OPTIONS'] = {
        'connect_timeout': 10,
    }

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = env('TIME_ZONE', default='Africa/Kampala')
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# REST Framework
# Callers are identified by TenantContextMiddleware, not by Django users.
REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 50,
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [],
    'UNAUTHENTICATED_USER': None,
    'EXCEPTION_HANDLER': 'apps.core.exceptions.custom_exception_handler',
}

# DRF Spectacular (OpenAPI)
SPECTACULAR_SETTINGS = {
    'TITLE': 'Hotspot Billing API',
    'DESCRIPTION': '''
Multi-tenant billing for prepaid hotspot (Wi-Fi) access.

## Authentication

- `X-TENANT-ID` + `X-TENANT-API-KEY`: tenant-scoped access
- `X-PLATFORM-API-KEY`: platform access across tenants; add `X-TENANT-ID`
  to target a single tenant

Gateway callbacks under `/v1/webhooks/` are public and verified by an
HMAC-SHA256 `signature` field.

## Payment flow

1. `POST /v1/payments` starts a mobile-money collection and returns a
   `transaction_id`.
2. The gateway calls back, or the client polls
   `POST /v1/payments/{transaction_id}/verify`.
3. On completion exactly one voucher is issued, sent by SMS and pushed to
   the tenant's router.
    ''',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
    'COMPONENT_SPLIT_REQUEST': True,
    'SCHEMA_PATH_PREFIX': r'/v1/',
    'SECURITY': [{'TenantApiKey': [], 'TenantId': []}],
    'APPEND_COMPONENTS': {
        'securitySchemes': {
            'TenantApiKey': {'type': 'apiKey', 'in': 'header', 'name': 'X-TENANT-API-KEY'},
            'TenantId': {'type': 'apiKey', 'in': 'header', 'name': 'X-TENANT-ID'},
            'PlatformApiKey': {'type': 'apiKey', 'in': 'header', 'name': 'X-PLATFORM-API-KEY'},
        }
    },
    'TAGS': [
        {'name': 'Payments', 'description': 'Payment initiation, verification and settlement'},
        {'name': 'Vouchers', 'description': 'Read-only voucher export'},
        {'name': 'Webhooks', 'description': 'Gateway callbacks'},
    ],
}

# ============================================================================
# SECURITY SETTINGS
# ============================================================================

if not DEBUG:
    SECURE_SSL_REDIRECT = env.bool('SECURE_SSL_REDIRECT', default=True)
    SECURE_HSTS_SECONDS = 31536000  # 1 year
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_HSTS_PRELOAD = True
else:
    SECURE_SSL_REDIRECT = False
    SECURE_HSTS_SECONDS = 0

SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = 'DENY'

# Platform-level credential for global scopes
PLATFORM_API_KEY = env('PLATFORM_API_KEY', default=None)

# CORS Configuration
CORS_ALLOW_ALL_ORIGINS = DEBUG
CORS_ALLOWED_ORIGINS = env.list('CORS_ALLOWED_ORIGINS', default=[])
CORS_ALLOW_HEADERS = [
    'accept',
    'accept-encoding',
    'content-type',
    'origin',
    'user-agent',
    'x-requested-with',
    'x-request-id',
    'x-tenant-id',
    'x-tenant-api-key',
    'x-platform-api-key',
]

# Redis Cache
CACHES = {
    'default': {
        'BACKEND': 'django_redis.cache.RedisCache',
        'LOCATION': env('REDIS_URL', default='redis://localhost:6379/0'),
        'OPTIONS': {
            'CLIENT_CLASS': 'django_redis.client.DefaultClient',
            'SOCKET_CONNECT_TIMEOUT': 5,
            'SOCKET_TIMEOUT': 5,
            'CONNECTION_POOL_KWARGS': {
                'max_connections': 50,
                'retry_on_timeout': True,
            },
        },
        'KEY_PREFIX': 'hotspot',
        'TIMEOUT': 300,
    }
}

# Celery Configuration
CELERY_BROKER_URL = env('CELERY_BROKER_URL', default='redis://localhost:6379/1')
CELERY_RESULT_BACKEND = env('CELERY_RESULT_BACKEND', default='redis://localhost:6379/2')

CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'

CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 30 * 60        # 30 minutes
CELERY_TASK_SOFT_TIME_LIMIT = 25 * 60   # 25 minutes

CELERY_TASK_DEFAULT_QUEUE = 'default'
CELERY_TASK_DEFAULT_EXCHANGE = 'default'
CELERY_TASK_DEFAULT_ROUTING_KEY = 'default'

CELERY_QUEUES = (
    Queue('default', Exchange('default'), routing_key='default'),
    Queue('payments', Exchange('payments'), routing_key='payments'),
    Queue('routers', Exchange('routers'), routing_key='routers'),
    Queue('notifications', Exchange('notifications'), routing_key='notifications'),
)

# Router calls are slow and must not hold up settlement or SMS
CELERY_TASK_ROUTES = {
    'apps.payments.tasks.*': {'queue': 'payments'},
    'apps.vouchers.tasks.*': {'queue': 'default'},
    'apps.routers.tasks.*': {'queue': 'routers'},
    'apps.integrations.tasks.*': {'queue': 'notifications'},
}

CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_ACKS_LATE = True

# Rate Limiting
RATE_LIMIT_ENABLED = env('RATE_LIMIT_ENABLED')
RATELIMIT_USE_CACHE = 'default'
RATELIMIT_ENABLE = RATE_LIMIT_ENABLED

# Logging Configuration
LOG_LEVEL = env('LOG_LEVEL')
JSON_LOGS = env('JSON_LOGS')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'json': {
            '()': 'apps.core.logging.JSONFormatter',
        },
        'verbose': {
            'format': '{levelname} {asctime} {name} {process:d} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'level': LOG_LEVEL,
            'class': 'logging.StreamHandler',
            'formatter': 'json' if JSON_LOGS else 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'celery': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'security': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}

# Sentry Configuration
SENTRY_DSN = env('SENTRY_DSN', default=None)
SENTRY_ENVIRONMENT = env('SENTRY_ENVIRONMENT', default='development')
SENTRY_RELEASE = env('SENTRY_RELEASE', default=None)

if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            DjangoIntegration(),
            CeleryIntegration(),
        ],
        environment=SENTRY_ENVIRONMENT,
        release=SENTRY_RELEASE,
        traces_sample_rate=0.1 if not DEBUG else 1.0,
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )

# ============================================================================
# BILLING PIPELINE
# ============================================================================

# Payment gateways
PAYMENT_GATEWAY = env('PAYMENT_GATEWAY', default='collectug')
PAYMENT_GATEWAY_TIMEOUT = env.int('PAYMENT_GATEWAY_TIMEOUT', default=30)
PAYMENT_VERIFICATION_TIMEOUT_MINUTES = env.int('PAYMENT_VERIFICATION_TIMEOUT_MINUTES', default=30)
PAYMENT_DEFAULT_CURRENCY = env('PAYMENT_DEFAULT_CURRENCY', default='UGX')
PAYMENT_CURRENCIES = env.list('PAYMENT_CURRENCIES', default=['UGX', 'KES', 'TZS', 'RWF', 'USD'])
PAYMENT_MAX_AMOUNT = env.float('PAYMENT_MAX_AMOUNT', default=10000000)
PAYMENT_WEBHOOK_SECRET = env('PAYMENT_WEBHOOK_SECRET', default=None)
PAYMENT_WEBHOOK_REQUIRE_SIGNATURE = env.bool('PAYMENT_WEBHOOK_REQUIRE_SIGNATURE', default=False)

# CollectUG (Uganda - Mobile Money)
COLLECTUG_API_KEY = env('COLLECTUG_API_KEY', default=None)
COLLECTUG_BASE_URL = env('COLLECTUG_BASE_URL', default='https://collectug.com')
COLLECTUG_CALLBACK_URL = env('COLLECTUG_CALLBACK_URL', default=None)

# M-Pesa (Kenya - Mobile Money)
MPESA_CONSUMER_KEY = env('MPESA_CONSUMER_KEY', default=None)
MPESA_CONSUMER_SECRET = env('MPESA_CONSUMER_SECRET', default=None)
MPESA_SHORTCODE = env('MPESA_SHORTCODE', default=None)
MPESA_PASSKEY = env('MPESA_PASSKEY', default=None)
MPESA_API_URL = env('MPESA_API_URL', default='https://sandbox.safaricom.co.ke')
MPESA_CALLBACK_URL = env('MPESA_CALLBACK_URL', default=None)

# Vouchers
VOUCHER_CODE_PREFIX = env('VOUCHER_CODE_PREFIX', default='BIL')
VOUCHER_CODE_MAX_ATTEMPTS = env.int('VOUCHER_CODE_MAX_ATTEMPTS', default=10)
VOUCHER_AUTO_DISABLE_AFTER_DAYS = env.int('VOUCHER_AUTO_DISABLE_AFTER_DAYS', default=30)
VOUCHER_DELETE_AFTER_DAYS = env.int('VOUCHER_DELETE_AFTER_DAYS', default=90)

# Hotspot routers
ROUTER_TIMEOUT = env.int('ROUTER_TIMEOUT', default=10)
ROUTER_REREAD_DELAY = env.float('ROUTER_REREAD_DELAY', default=0.5)

# SMS (Twilio)
SMS_ENABLED = env.bool('SMS_ENABLED', default=False)
SMS_VOUCHER_TEMPLATE = env('SMS_VOUCHER_TEMPLATE', default=None)
TWILIO_ACCOUNT_SID = env('TWILIO_ACCOUNT_SID', default=None)
TWILIO_AUTH_TOKEN = env('TWILIO_AUTH_TOKEN', default=None)
TWILIO_FROM_NUMBER = env('TWILIO_FROM_NUMBER', default=None)
TWILIO_MESSAGING_SERVICE_SID = env('TWILIO_MESSAGING_SERVICE_SID', default=None)
