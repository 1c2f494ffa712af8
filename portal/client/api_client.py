"""
Portal API client — thin httpx wrapper with a typed error taxonomy.

    PortalClientError
    ├── ConnectivityError    transport failure or timeout (retry later)
    ├── ServerError          5xx or unreadable body (retry later)
    ├── NotFoundError        404
    └── InvalidRequestError  other 4xx, or rejected before sending
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class PortalClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectivityError(PortalClientError):
    pass


class ServerError(PortalClientError):
    pass


class NotFoundError(PortalClientError):
    pass


class InvalidRequestError(PortalClientError):
    pass


# Failures worth queueing or falling back for
TRANSIENT_ERRORS = (ConnectivityError, ServerError)


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body.get("message") or body)
    return str(body)


class PortalAPIClient:
    def __init__(
        self,
        base_url: str,
        timeout_ms: int = 5000,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = max(int(timeout_ms), 1) / 1000.0
        self.token = token
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = await self.client.request(method, path, headers=headers, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise ConnectivityError(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise ConnectivityError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(_detail(response), status_code=404)
        if response.status_code >= 500:
            raise ServerError(f"Server error {response.status_code}: {_detail(response)}", status_code=response.status_code)
        if response.status_code >= 400:
            raise InvalidRequestError(_detail(response), status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ServerError(f"Malformed response from {method} {path}") from e

    # ── Endpoints ────────────────────────────────────────────

    async def health(self) -> Dict[str, Any]:
        return await self._request("GET", "/health")

    async def login(self, email: str, password: str) -> str:
        data = await self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.token = data["access_token"]
        return self.token

    async def list_services(self, category: Optional[str] = None, search: Optional[str] = None) -> Dict[str, Any]:
        params = {k: v for k, v in (("category", category), ("search", search)) if v}
        return await self._request("GET", "/services", params=params)

    async def get_service(self, service_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/services/{service_id}")

    async def submit_feedback(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/feedback", json=payload)

    async def sync(self, payloads: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not payloads:
            return {"synced": 0, "errors": 0, "total": 0, "results": []}
        return await self._request("POST", "/sync", json={"payloads": payloads})

    async def ask(self, question: str, language: str = "fr", conversation_key: Optional[str] = None) -> Dict[str, Any]:
        body = {"question": question, "language": language}
        if conversation_key:
            body["conversation_key"] = conversation_key
        return await self._request("POST", "/assistant/ask", json=body)

    async def search_knowledge(self, query: str, limit: int = 10) -> Dict[str, Any]:
        return await self._request("POST", "/knowledge-base/search", json={"query": query, "limit": limit})
