"""
HTTP client for the back-office persistence API.
"""

from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config import get_settings
from ..errors import (
    ConcurrentModification,
    ERRORS_BY_CODE,
    ReconciliationError,
    StoreError,
)

logger = structlog.get_logger()

T = TypeVar("T")

# What a from_dict raises on a payload of the wrong shape
MALFORMED_PAYLOAD_ERRORS = (
    KeyError,
    TypeError,
    ValueError,
    AttributeError,
    ArithmeticError,
)


def is_transient(error: BaseException) -> bool:
    """Transport failures and 5xx answers are worth another read attempt."""
    return isinstance(error, StoreError) and (
        error.status_code == 0 or error.status_code >= 500
    )


def error_from_response(response: httpx.Response, endpoint: str) -> ReconciliationError:
    """Rebuild the server's typed error from its {code, message, details} body."""
    body: Any = response.text
    try:
        body = response.json()
    except ValueError:
        pass

    code = body.get("code") if isinstance(body, dict) else None
    message = (
        body.get("message") if isinstance(body, dict) and body.get("message")
        else f"API error {response.status_code} on {endpoint}"
    )
    details = body.get("details") if isinstance(body, dict) else body

    error_cls = ERRORS_BY_CODE.get(code)
    if error_cls is not None and error_cls is not StoreError:
        return error_cls(message, details=details)
    if error_cls is None and response.status_code == 409:
        return ConcurrentModification(message, details=details)
    return StoreError(message, status_code=response.status_code, details=details)


def parse_one(factory: Callable[[Dict[str, Any]], T], data: Any, endpoint: str) -> T:
    """Build one model from a decoded body. A wrong-shaped body is a StoreError."""
    try:
        return factory(data)
    except MALFORMED_PAYLOAD_ERRORS as e:
        logger.warning("Store returned a malformed record", endpoint=endpoint, error=repr(e))
        raise StoreError(
            f"Malformed record from {endpoint}: {e!r}",
            status_code=502,
            details={"endpoint": endpoint},
        )


def parse_many(factory: Callable[[Dict[str, Any]], T], data: Any, endpoint: str) -> List[T]:
    if not isinstance(data, list):
        raise StoreError(
            f"Expected a list from {endpoint}, got {type(data).__name__}",
            status_code=502,
            details={"endpoint": endpoint},
        )
    return [parse_one(factory, item, endpoint) for item in data]


class RestClient:
    """
    Authenticated httpx client shared by the REST gateways.

    Writes go out exactly once. Reads are retried on transient failures with
    exponential backoff.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        tenant_id: Optional[str] = None,
        timeout: Optional[float] = None,
        read_retry_attempts: Optional[int] = None,
        retry_wait=None,
    ):
        self.settings = get_settings()
        self.base_url = base_url or self.settings.store_api_url
        self.api_key = api_key if api_key is not None else self.settings.store_api_key
        self.tenant_id = tenant_id or self.settings.tenant_id
        self.timeout = timeout or self.settings.request_timeout_seconds
        self.read_retry_attempts = read_retry_attempts or self.settings.read_retry_attempts
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=10)
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Tenant-Id": self.tenant_id,
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Single authenticated request. Never retried."""
        client = await self._get_client()

        try:
            response = await client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException:
            raise StoreError(f"Request timeout: {method} {endpoint}")
        except httpx.RequestError as e:
            raise StoreError(f"Request error: {str(e)}")

        if response.status_code >= 400:
            error = error_from_response(response, endpoint)
            logger.warning(
                "Store request failed",
                method=method,
                endpoint=endpoint,
                status_code=response.status_code,
                code=error.code,
            )
            raise error

        if response.status_code == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError:
            logger.warning(
                "Store returned a non-JSON body",
                method=method,
                endpoint=endpoint,
                status_code=response.status_code,
            )
            raise StoreError(
                f"Malformed response body from {method} {endpoint}",
                status_code=response.status_code,
                details={"body": response.text[:200]},
            )

    async def read(self, method: str, endpoint: str, **kwargs) -> Any:
        """Idempotent read, retried on transport errors and 5xx answers."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.read_retry_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception(is_transient),
            reraise=True,
        ):
            with attempt:
                return await self.request(method, endpoint, **kwargs)

    async def get(self, endpoint: str, **kwargs) -> Any:
        return await self.read("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs) -> Any:
        return await self.request("POST", endpoint, **kwargs)
