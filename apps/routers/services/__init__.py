from apps.routers.services.access_controller import (
    AccessController,
    AccessControllerError,
    AccessControllerNotConfigured,
    HotspotUserSpec,
    RemoteUserRecord,
)
from apps.routers.services.routeros_service import RouterOsClient
from apps.routers.services.reconciler import (
    RouterReconciler,
    ReconcileResult,
    ReconcileDetail,
    get_access_controller,
    MODES,
)

__all__ = [
    'AccessController',
    'AccessControllerError',
    'AccessControllerNotConfigured',
    'HotspotUserSpec',
    'RemoteUserRecord',
    'RouterOsClient',
    'RouterReconciler',
    'ReconcileResult',
    'ReconcileDetail',
    'get_access_controller',
    'MODES',
]
