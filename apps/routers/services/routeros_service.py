"""
RouterOS (MikroTik) hotspot client over the v7 REST API.

Hotspot users live under ``/rest/ip/hotspot/user``. RouterOS reports
booleans as the strings ``"true"``/``"false"`` and addresses rows by
their ``.id`` (e.g. ``*1A``).
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

import requests
from django.conf import settings

from apps.routers.services.access_controller import (
    AccessController, AccessControllerError, HotspotUserSpec, RemoteUserRecord,
)

logger = logging.getLogger(__name__)

USER_PATH = '/ip/hotspot/user'


class RouterOsClient(AccessController):
    """AccessController backed by a RouterOS device."""

    def __init__(self, host, username, password, port=None, use_ssl=True,
                 verify_ssl=True, timeout=None, server='all'):
        """
        Args:
            host: Router address
            username: API user
            password: API password
            port: REST port, defaults to 443/80 depending on ``use_ssl``
            timeout: Per-request timeout in seconds (``ROUTER_TIMEOUT``)
            server: Hotspot server new users are bound to
        """
        scheme = 'https' if use_ssl else 'http'
        port = port or (443 if use_ssl else 80)
        self.base_url = f"{scheme}://{host}:{port}/rest"
        self.host = host
        self.server = server
        self.timeout = timeout or settings.ROUTER_TIMEOUT
        self.session = requests.Session()
        self.session.auth = (username, password)
        self.session.verify = verify_ssl
        self.session.headers.update({'Content-Type': 'application/json'})

    @classmethod
    def from_config(cls, config):
        return cls(
            host=config.host,
            username=config.username,
            password=config.password,
            port=config.port,
            use_ssl=config.use_ssl,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
            server=config.hotspot_server,
        )

    def _request(self, method, path, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(
                f"RouterOS {method} {path} failed: {str(e)}",
                extra={'router_host': self.host}
            )
            raise AccessControllerError(
                f"Router {self.host} request failed: {str(e)}",
                details={'method': method, 'path': path}
            ) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise AccessControllerError(
                f"Router {self.host} returned a non-JSON body",
                details={'method': method, 'path': path}
            ) from e

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> RemoteUserRecord:
        return RemoteUserRecord(
            username=row.get('name', ''),
            enabled=str(row.get('disabled', 'false')).lower() != 'true',
            profile=row.get('profile', ''),
            comment=row.get('comment', ''),
            remote_id=row.get('.id'),
        )

    def _find(self, username) -> Optional[Dict[str, Any]]:
        rows = self._request('GET', USER_PATH, params={'name': username}) or []
        for row in rows:
            if row.get('name') == username:
                return row
        return None

    def get_user(self, username: str) -> Optional[RemoteUserRecord]:
        row = self._find(username)
        return self._to_record(row) if row else None

    def create_user(self, spec: HotspotUserSpec) -> bool:
        body = {
            'server': self.server,
            'name': spec.username,
            'password': spec.password,
            'profile': spec.profile,
            'limit-uptime': spec.limit_uptime,
            'comment': spec.comment,
            'disabled': 'false' if spec.enabled else 'true',
        }
        if spec.data_limit_bytes:
            body['limit-bytes-total'] = str(spec.data_limit_bytes)

        self._request('PUT', USER_PATH, json=body)
        logger.info(
            "Hotspot user created",
            extra={'router_host': self.host, 'username': spec.username, 'profile': spec.profile}
        )
        return True

    def _set_disabled(self, username, disabled) -> bool:
        row = self._find(username)
        if row is None:
            return False
        self._request('PATCH', f"{USER_PATH}/{row['.id']}", json={'disabled': 'true' if disabled else 'false'})
        return True

    def enable_user(self, username: str) -> bool:
        return self._set_disabled(username, False)

    def disable_user(self, username: str) -> bool:
        return self._set_disabled(username, True)

    def remove_expired_users(self, usernames: Optional[Iterable[str]] = None) -> int:
        rows: List[Dict[str, Any]] = self._request('GET', USER_PATH) or []
        if usernames is None:
            targets = [row for row in rows if str(row.get('disabled', 'false')).lower() == 'true']
        else:
            wanted = set(usernames)
            targets = [row for row in rows if row.get('name') in wanted]

        removed = 0
        for row in targets:
            self._request('DELETE', f"{USER_PATH}/{row['.id']}")
            removed += 1

        if removed:
            logger.info("Hotspot users removed", extra={'router_host': self.host, 'count': removed})
        return removed
