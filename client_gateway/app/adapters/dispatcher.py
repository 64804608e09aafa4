"""
Request dispatcher for the backend REST API.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import httpx

from shared.errors import TransportError, error_for_status
from shared.logging import get_logger, set_request_id
from shared.metrics import GatewayMetrics


class TokenProvider(Protocol):
    """Anything that can hand out the current auth token."""

    async def get_token(self) -> Optional[str]:
        """Return the current token, or None when logged out."""


@dataclass
class ApiResponse:
    """Decoded backend response."""
    status_code: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


def extract_error_message(data: Any, response: httpx.Response) -> str:
    """Pick the most useful human-readable message from an error body."""
    if isinstance(data, dict):
        detail = data.get("detail")
        if detail:
            return str(detail)
        for key, value in data.items():
            if isinstance(value, list) and value:
                if key == "non_field_errors":
                    return str(value[0])
                return f"{key}: {value[0]}"
            if isinstance(value, str) and value:
                return value[:200]
    elif isinstance(data, str) and data:
        return data[:200]
    return response.reason_phrase or f"HTTP {response.status_code}"


class RequestDispatcher:
    """
    Builds and sends backend requests.

    The token is read from the provider on every call so a login or logout
    between two requests is honoured immediately. The dispatcher never
    retries and never interprets business-level status codes.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[TokenProvider] = None,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[GatewayMetrics] = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.token_provider = token_provider
        self.logger = get_logger("gateway.dispatcher")
        self.metrics = metrics or GatewayMetrics()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def _read_token(self) -> Optional[str]:
        if self.token_provider is None:
            return None
        try:
            return await self.token_provider.get_token()
        except Exception as e:
            # A broken token read degrades to an unauthenticated request
            self.logger.error("Error getting session token", error=str(e))
            return None

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return {"text": response.text}

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        authenticate: bool = True,
        headers: Optional[Dict[str, str]] = None,
    ) -> ApiResponse:
        """
        Send one request to ``<base_url><path>``.

        Raises:
            TransportError: No response was received
            ApiError: The backend answered with status >= 400 (or a subclass
                such as AuthenticationError for 401)
        """
        method = method.upper()
        request_headers = {"Accept": "application/json", **(headers or {})}
        if authenticate:
            token = await self._read_token()
            if token:
                request_headers["Authorization"] = f"Token {token}"
        request_headers["X-Request-ID"] = set_request_id()

        if params:
            params = {k: v for k, v in params.items() if v is not None}

        url = path.lstrip("/")
        with self.metrics.time_request(method) as outcome:
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params or None,
                    json=json,
                    headers=request_headers,
                )
            except httpx.TransportError as e:
                # strip memory addresses like <HTTPConnection at 0x...>
                sanitized = re.sub(r'0x[0-9a-fA-F]+', '<ptr>', str(e))
                self.logger.error(
                    "Request failed",
                    method=method,
                    path=url,
                    exc_type=type(e).__name__,
                    error=sanitized
                )
                raise TransportError(
                    "Network request failed",
                    details={"method": method, "path": url, "error": sanitized}
                ) from e
            outcome["status_code"] = response.status_code

        data = self._decode(response)
        if response.status_code >= 400:
            message = extract_error_message(data, response)
            self.logger.debug(
                "Request returned error status",
                method=method,
                path=url,
                status_code=response.status_code,
                message=message
            )
            raise error_for_status(
                response.status_code,
                message,
                details={"method": method, "path": url, "body": data}
            )

        return ApiResponse(
            status_code=response.status_code,
            data=data,
            headers=dict(response.headers),
        )

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> ApiResponse:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs) -> ApiResponse:
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs) -> ApiResponse:
        return await self.request("PUT", path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs) -> ApiResponse:
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("DELETE", path, **kwargs)

    async def close(self):
        """Close the HTTP client if the dispatcher created it."""
        if self._owns_client:
            await self._client.aclose()
