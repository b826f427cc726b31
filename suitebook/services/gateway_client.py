from typing import Protocol

import httpx

from suitebook.services.payment_errors import GatewayError, GatewayTimeoutError


class HttpClient(Protocol):
    async def request(self, method: str, path: str, body: dict | None = None) -> dict: ...


class GatewayClient:
    """JSON over HTTPS against one provider: fixed base URL, fixed auth headers."""

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str],
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Accept": "application/json", **headers}
        self.timeout = timeout
        self._transport = transport

    async def request(self, method: str, path: str, body: dict | None = None) -> dict:
        headers = dict(self.headers)
        if body is not None:
            headers["Content-Type"] = "application/json"
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                r = await client.request(method.upper(), path, json=body, headers=headers)
            except httpx.TimeoutException as e:
                raise GatewayTimeoutError() from e
            except httpx.TransportError as e:
                raise GatewayError(f"Gateway unreachable: {e}", 0) from e

        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            message = data.get("message") if isinstance(data, dict) else None
            raise GatewayError(message or f"Gateway error ({r.status_code})", r.status_code, data)
        return data
