"""
Immich Server Web API Client

A small client for the parts of the Immich REST API that stacking needs:
server version, asset listing (metadata search and timeline buckets), stack
creation and the legacy bulk asset update.

Every call states the status code it expects. Any other status raises
ImmichProtocolError; transport failures raise ImmichNetworkError. Callers
decide which of those are fatal.
"""

import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

import requests

from immich_stacker.core import config
from immich_stacker.utils.logger import log_api_request, log_api_response

logger = logging.getLogger(__name__)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ImmichAPIError(Exception):
    """Base exception for all Immich API errors."""
    pass


class ImmichAuthenticationError(ImmichAPIError):
    """Raised when the server rejects the API key (401/403)."""
    pass


class ImmichNetworkError(ImmichAPIError):
    """Raised when the request never produced a response."""
    pass


class ImmichProtocolError(ImmichAPIError):
    """Raised when a response does not match the documented contract."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# ============================================================================
# MAIN API CLIENT
# ============================================================================

class ImmichAPI:
    """
    Immich Server Web API client.

    Usage:
        ```python
        with ImmichAPI(endpoint, api_key) as api:
            version = api.server.get_version()
            page = api.search.metadata(page=1, size=1000)
        ```

    Attributes:
        server: ServerAPI - server information
        search: SearchAPI - paginated metadata search
        timeline: TimelineAPI - time bucket listing
        assets: AssetsAPI - bulk asset updates
        stacks: StacksAPI - stack creation
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = config.NETWORK_TIMEOUT_SECONDS,
        verify_tls: bool = True,
        debug_http: bool = False,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the Immich API client.

        Args:
            base_url: Base URL of the Immich server (e.g. "https://photos.example.com")
            api_key: Immich API key, sent as the x-api-key header
            timeout: Request timeout in seconds
            verify_tls: Verify server certificates (False for self-signed setups)
            debug_http: Log full request and response details at DEBUG
            session: Optional pre-built requests session
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.debug_http = debug_http

        self.session = session or requests.Session()
        self.session.headers.update({
            config.API_KEY_HEADER: api_key,
            'Accept': 'application/json',
        })
        self.session.verify = verify_tls
        if not verify_tls:
            logger.warning("Insecure TLS connections enabled")

        # Observability
        self._request_count = 0
        self._latency_by_endpoint: Dict[str, List[float]] = {}
        self._error_counts: Dict[str, int] = {}

        self.server = ServerAPI(self)
        self.search = SearchAPI(self)
        self.timeline = TimelineAPI(self)
        self.assets = AssetsAPI(self)
        self.stacks = StacksAPI(self)

        logger.debug(f"Initialized ImmichAPI for {self.base_url}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        self.session.close()

    # ------------------------------------------------------------------------
    # REQUEST HANDLING
    # ------------------------------------------------------------------------

    def request(
        self,
        method: str,
        endpoint: str,
        expected_status: int,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None
    ) -> Any:
        """
        Make an API request and check its status.

        Args:
            method: HTTP method (GET, POST, PUT)
            endpoint: API path (e.g. "/api/stacks")
            expected_status: The documented success status for this call
            params: Optional URL query parameters
            json: Optional JSON request body

        Returns:
            Decoded JSON body, or None when the response has no body

        Raises:
            ImmichNetworkError: The request failed in transport
            ImmichAuthenticationError: The server answered 401 or 403
            ImmichProtocolError: Any other unexpected status, or an undecodable body
        """
        url = f"{self.base_url}{endpoint}"

        if self.debug_http:
            log_api_request(logger, method, url, headers=self.session.headers, data=json, params=params)

        self._request_count += 1
        start = time.monotonic()
        try:
            response = self.session.request(
                method, url, params=params, json=json, timeout=self.timeout
            )
        except requests.RequestException as e:
            self._count_error(type(e).__name__)
            raise ImmichNetworkError(f"{method} {endpoint} failed: {e}") from e
        finally:
            elapsed = time.monotonic() - start
            self._latency_by_endpoint.setdefault(endpoint, []).append(elapsed * 1000.0)

        body = self._decode(response)

        if self.debug_http:
            log_api_response(logger, response.status_code, body, elapsed)

        if response.status_code != expected_status:
            self._count_error(f"HTTP {response.status_code}")
            message = f"{method} {endpoint}: expected HTTP {expected_status}, got {response.status_code}"
            if response.status_code in (401, 403):
                raise ImmichAuthenticationError(message)
            raise ImmichProtocolError(message, status_code=response.status_code)

        return body

    def _decode(self, response: requests.Response) -> Any:
        if response.status_code == config.HTTP_NO_CONTENT or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            if response.ok:
                raise ImmichProtocolError(
                    f"Invalid JSON response from {response.url}", status_code=response.status_code
                )
            # Error pages are often HTML; the status check reports them
            return response.text

    def _count_error(self, kind: str):
        self._error_counts[kind] = self._error_counts.get(kind, 0) + 1

    # ------------------------------------------------------------------------
    # OBSERVABILITY
    # ------------------------------------------------------------------------

    def get_request_count(self) -> int:
        return self._request_count

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of request counts, per-endpoint latency (ms) and error counts."""
        return {
            'requests': self._request_count,
            'latency_ms_by_endpoint': {k: list(v) for k, v in self._latency_by_endpoint.items()},
            'errors': dict(self._error_counts),
        }


# ============================================================================
# SUB-API CLASSES
# ============================================================================

class BaseAPI:
    """Base class for sub-API implementations."""

    def __init__(self, client: ImmichAPI):
        self.client = client

    def _request(self, *args, **kwargs):
        """Shortcut to client.request()"""
        return self.client.request(*args, **kwargs)


class ServerAPI(BaseAPI):

    def get_version(self) -> Dict[str, int]:
        """
        Get the server version.

        Returns:
            Dict with 'major', 'minor' and 'patch'
        """
        data = self._request("GET", config.ENDPOINT_SERVER_VERSION, config.HTTP_OK)
        if not isinstance(data, dict):
            raise ImmichProtocolError("Server version response is empty", status_code=config.HTTP_OK)
        try:
            return {part: int(data[part]) for part in ('major', 'minor', 'patch')}
        except (KeyError, TypeError, ValueError) as e:
            raise ImmichProtocolError(f"Malformed server version response: {data!r}") from e


class SearchAPI(BaseAPI):

    def metadata(self, page: int = 1, size: int = config.DEFAULT_PAGE_SIZE, with_stacked: bool = True) -> Dict[str, Any]:
        """
        Run one page of a metadata search over all assets.

        Args:
            page: Page number, starting at 1
            size: Number of assets per page
            with_stacked: Ask the server to report stack membership per asset

        Returns:
            Dict with 'items' (list of asset objects) and 'nextPage'
            (None on the last page)
        """
        payload = {'page': page, 'size': size, 'withStacked': with_stacked}
        data = self._request("POST", config.ENDPOINT_SEARCH_METADATA, config.HTTP_OK, json=payload)
        if not isinstance(data, dict) or not isinstance(data.get('assets'), dict):
            raise ImmichProtocolError("Metadata search response has no 'assets' object", status_code=config.HTTP_OK)

        assets = data['assets']
        items = assets.get('items')
        if not isinstance(items, list):
            raise ImmichProtocolError("Metadata search response has no 'items' list", status_code=config.HTTP_OK)
        return {'items': items, 'nextPage': assets.get('nextPage')}


class TimelineAPI(BaseAPI):

    def get_buckets(self, with_stacked: bool = True) -> List[Dict[str, Any]]:
        """List monthly time buckets as dicts with 'timeBucket' and 'count'."""
        params = {'size': config.TIME_BUCKET_SIZE, 'withStacked': str(with_stacked).lower()}
        data = self._request("GET", config.ENDPOINT_TIME_BUCKETS, config.HTTP_OK, params=params)
        if not isinstance(data, list):
            raise ImmichProtocolError("Time bucket listing is not a list", status_code=config.HTTP_OK)
        return data

    def get_bucket(self, time_bucket: str, with_stacked: bool = True) -> List[Dict[str, Any]]:
        """Fetch every asset in one time bucket."""
        params = {
            'timeBucket': time_bucket,
            'size': config.TIME_BUCKET_SIZE,
            'withStacked': str(with_stacked).lower(),
        }
        data = self._request("GET", config.ENDPOINT_TIME_BUCKET, config.HTTP_OK, params=params)
        if not isinstance(data, list):
            raise ImmichProtocolError(f"Time bucket {time_bucket} is not a list", status_code=config.HTTP_OK)
        return data


class StacksAPI(BaseAPI):

    def create(self, asset_ids: Sequence[uuid.UUID]) -> Any:
        """
        Create a stack. The first id becomes the primary asset.

        Raises:
            ImmichProtocolError: Unless the server answers 201 Created
        """
        payload = {'assetIds': [str(asset_id) for asset_id in asset_ids]}
        return self._request("POST", config.ENDPOINT_STACKS, config.HTTP_CREATED, json=payload)


class AssetsAPI(BaseAPI):

    def update_stack_parent(self, asset_ids: Sequence[uuid.UUID], stack_parent_id: uuid.UUID) -> None:
        """
        Legacy stacking: attach assets to a parent via the bulk update endpoint.

        Raises:
            ImmichProtocolError: Unless the server answers 204 No Content
        """
        payload = {
            'ids': [str(asset_id) for asset_id in asset_ids],
            'stackParentId': str(stack_parent_id),
        }
        self._request("PUT", config.ENDPOINT_ASSETS, config.HTTP_NO_CONTENT, json=payload)
