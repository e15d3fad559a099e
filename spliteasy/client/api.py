"""
Async HTTP client for the SplitEasy API.

Every failure comes back as a typed error: the service's error ``code`` is
mapped onto the matching class from ``spliteasy.core.errors``, a rejected
token raises ``AuthenticationError`` and a transport failure raises
``NetworkError``. Nothing here retries; callers decide.
"""
import logging
import httpx
from spliteasy.core.errors import (
    ERRORS_BY_CODE,
    AuthenticationError,
    Conflict,
    NetworkError,
    NotFound,
    SplitEasyError,
    Unauthorized,
    ValidationError,
)

logger = logging.getLogger(__name__)

_ERRORS_BY_STATUS = {403: Unauthorized, 404: NotFound, 409: Conflict, 422: ValidationError}

class SplitEasyClient:
    def __init__(self, base_url: str, token: str, http: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self.token = token
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._prefix = "/api/v1"

    async def aclose(self):
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs):
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            response = await self._http.request(method, self._prefix + path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if response.is_success:
            return response.json()

        raise _error_from_response(response)

    # settlements

    async def get_balances(self, group_id: int) -> list[dict]:
        return await self._request("GET", f"/settle/{group_id}/balances")

    async def list_settlements(self, group_id: int, status: str | None = None) -> list[dict]:
        params = {"status": status} if status else None
        return await self._request("GET", f"/groups/{group_id}/settlements", params=params)

    async def pay(self, settlement_id: int, amount: float | None = None, version: int | None = None) -> dict:
        body = _drop_none({"amount": amount, "version": version})
        return await self._request("POST", f"/settlements/{settlement_id}/pay", json=body)

    async def confirm(self, settlement_id: int, version: int | None = None) -> dict:
        return await self._request("POST", f"/settlements/{settlement_id}/confirm", json=_drop_none({"version": version}))

    async def undo(self, settlement_id: int, version: int | None = None) -> dict:
        return await self._request("POST", f"/settlements/{settlement_id}/undo", json=_drop_none({"version": version}))

    async def optimize(self, group_id: int) -> list[dict]:
        return await self._request("POST", f"/groups/{group_id}/settlements/optimize")

    # chat

    async def list_messages(self, group_id: int, limit: int = 50) -> list[dict]:
        return await self._request("GET", f"/chat/{group_id}/messages", params={"limit": limit})

    async def send_message(self, group_id: int, content: str) -> dict:
        return await self._request("POST", f"/chat/{group_id}/messages", json={"content": content})

    async def delete_message(self, message_id: int) -> dict:
        return await self._request("DELETE", f"/chat/messages/{message_id}")

def _drop_none(body: dict) -> dict:
    return {k: v for k, v in body.items() if v is not None}

def _error_from_response(response: httpx.Response) -> Exception:
    try:
        body = response.json()
    except ValueError:
        body = {}

    detail = body.get("detail") if isinstance(body, dict) else None
    if not isinstance(detail, str):
        detail = str(detail or response.reason_phrase)

    if response.status_code == 401:
        return AuthenticationError(detail)

    code = body.get("code") if isinstance(body, dict) else None
    error_cls = ERRORS_BY_CODE.get(code) or _ERRORS_BY_STATUS.get(response.status_code)

    if error_cls is None:
        logger.warning("unexpected %s from %s", response.status_code, response.request.url)
        error = SplitEasyError(detail)
        error.status_code = response.status_code
        return error

    return error_cls(detail)
