# -*- coding: utf-8 -*-
"""
Sync HTTP Client

Talks to the remote sync endpoint: version probe, pull and push.
Bearer-token authentication and retries for transient failures.
"""

import logging
from typing import Dict, Any, List, Optional
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import SyncConfig
from .models import SyncRecord, PushResult

logger = logging.getLogger(__name__)


class NetworkError(Exception):
    """Transient failure: connection, timeout or server error"""
    pass


class AuthError(Exception):
    """Credentials rejected; not retried until they change"""
    pass


class SyncClient:
    """
    Sync endpoint HTTP client.

    Features:
    - Bearer token on every call
    - Automatic retry for connection errors and 429/5xx
    - Bounded timeouts; a timeout is reported as NetworkError
    """

    def __init__(self, config: SyncConfig):
        """
        Args:
            config: SyncConfig instance
        """
        self.config = config
        self._session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Session with retry strategy"""
        session = requests.Session()

        # push is idempotent, so POST is retried as well
        retry_strategy = Retry(
            total=3,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=frozenset(['GET', 'POST']),
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })

        return session

    def _get_url(self, endpoint: str) -> str:
        """Full URL for an endpoint"""
        base = self.config.endpoint_url.rstrip('/') + '/'
        return urljoin(base, endpoint.lstrip('/'))

    def _request(self, method: str, endpoint: str,
                 params: Optional[Dict[str, Any]] = None,
                 json_body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Authenticated request.

        Raises:
            AuthError: no token, 401 or 403
            NetworkError: connection error, timeout, 5xx or bad response
        """
        if not self.config.auth_token:
            raise AuthError("No auth token configured")

        query: Dict[str, Any] = {}
        if self.config.user_id:
            query['user_id'] = self.config.user_id
        if params:
            query.update(params)

        try:
            response = self._session.request(
                method,
                self._get_url(endpoint),
                params=query,
                json=json_body,
                headers={'Authorization': f'Bearer {self.config.auth_token}'},
                timeout=self.config.request_timeout,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"{method} {endpoint} timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"{method} {endpoint} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthError(
                f"{method} {endpoint} rejected ({response.status_code}): "
                f"{response.text[:200]}"
            )

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise NetworkError(f"{method} {endpoint} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(f"{method} {endpoint} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise NetworkError(
                f"{method} {endpoint} returned {type(data).__name__}, expected an object"
            )
        return data

    def check_connection(self) -> bool:
        """
        Unauthenticated health check.

        Returns:
            True if the endpoint answers
        """
        try:
            response = self._session.get(
                self._get_url('/api/health'),
                timeout=min(5, self.config.request_timeout),
            )
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            logger.warning(f"Connection check failed: {e}")
            return False

    # ============================================================
    # SYNC ENDPOINTS
    # ============================================================

    def probe_version(self) -> int:
        """
        Remote's current version for this account.

        Returns:
            Remote version (0 for an empty account)
        """
        data = self._request('GET', '/api/sync/version')
        try:
            return int(data.get('version', 0))
        except (TypeError, ValueError) as e:
            raise NetworkError(f"Invalid version in probe response: {data!r}") from e

    def pull(self, since: int = 0) -> List[Dict[str, Any]]:
        """
        Remote records with ``version > since``, tombstones included.

        Args:
            since: read watermark; 0 returns the full dataset

        Returns:
            Wire records, not yet validated
        """
        data = self._request('GET', '/api/sync/pull', params={'since': since})
        records = data.get('records', [])
        if not isinstance(records, list):
            raise NetworkError("Pull response has no record list")
        logger.debug(f"Pulled {len(records)} records since {since}")
        return records

    def push(self, records: List[SyncRecord]) -> PushResult:
        """
        Upsert records on the remote.

        Args:
            records: local records to send

        Returns:
            PushResult
        """
        data = self._request(
            'POST',
            '/api/sync/push',
            json_body={'records': [r.to_dict() for r in records]},
        )
        try:
            return PushResult.from_dict(data)
        except (TypeError, ValueError) as e:
            raise NetworkError(f"Invalid push response: {data!r}") from e
