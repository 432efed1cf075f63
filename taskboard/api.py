"""
REST client for the taskboard backend.

One method per endpoint; paths are relative to the configured base URL.
HTTP failures are mapped onto the taskboard.errors taxonomy.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import (
    AuthorizationError,
    NetworkError,
    NotFoundError,
    TaskboardError,
    ValidationError,
)
from .session import Session

logger = logging.getLogger(__name__)


class BearerAuth(httpx.Auth):
    """Attach the session's current token to every request."""

    def __init__(self, session: Session):
        self.session = session

    def auth_flow(self, request: httpx.Request):
        if self.session.token:
            request.headers["Authorization"] = f"Bearer {self.session.token}"
        yield request


def _server_message(response: httpx.Response) -> str:
    """Pull the human-readable message out of an error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return ""
    if not isinstance(body, dict):
        return ""
    message = body.get("message") or body.get("error") or ""
    if isinstance(message, list):
        return "; ".join(str(m) for m in message)
    return str(message)


def error_for_status(status: int, message: str) -> TaskboardError:
    if status in (400, 422):
        return ValidationError(message, status)
    if status in (401, 403):
        return AuthorizationError(message, status)
    if status == 404:
        return NotFoundError(message, status)
    return NetworkError(message, status)


class ApiClient:
    """Async HTTP client for boards, members, users and tasks."""

    def __init__(
        self,
        base_url: str,
        session: Session,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session = session
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            headers={"Content-Type": "application/json"},
            auth=BearerAuth(session),
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send one request; return the decoded JSON body (None when empty)."""
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {path} timed out: {e}")
            raise NetworkError(f"Request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise NetworkError(f"Request failed: {method} {path}") from e

        if response.is_error:
            message = _server_message(response)
            logger.warning(
                f"API error: {method} {path} status={response.status_code} message={message!r}"
            )
            raise error_for_status(response.status_code, message)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"Invalid JSON from {method} {path}") from e

    # ── Boards ───────────────────────────────────────────────────────────

    async def list_boards(self) -> List[Dict[str, Any]]:
        return await self.request("GET", "boards") or []

    async def create_board(self, name: str) -> Dict[str, Any]:
        return await self.request("POST", "boards", json={"name": name})

    async def rename_board(self, board_id: str, name: str) -> None:
        await self.request("PATCH", f"boards/{board_id}", json={"name": name})

    async def delete_board(self, board_id: str) -> None:
        await self.request("DELETE", f"boards/{board_id}")

    async def list_members(self, board_id: str) -> List[Dict[str, Any]]:
        return await self.request("GET", f"boards/{board_id}/members") or []

    async def share_board(self, board_id: str, user_id: str, role: str) -> None:
        await self.request("POST", f"boards/{board_id}/share", json={"userId": user_id, "role": role})

    async def update_member_role(self, board_id: str, user_id: str, role: str) -> None:
        await self.request("PATCH", f"boards/{board_id}/members/{user_id}", json={"role": role})

    async def remove_member(self, board_id: str, user_id: str) -> None:
        await self.request("DELETE", f"boards/{board_id}/members/{user_id}")

    # ── Users ────────────────────────────────────────────────────────────

    async def users_batch(self, ids: List[str]) -> List[Dict[str, Any]]:
        return await self.request("POST", "auth/users/batch", json={"ids": ids}) or []

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        return await self.request("GET", f"auth/users/{user_id}")

    async def search_users(self, q: str) -> List[Dict[str, Any]]:
        return await self.request("GET", "auth/users/search", params={"q": q}) or []

    # ── Tasks ────────────────────────────────────────────────────────────

    async def list_tasks(self, board_id: str) -> List[Dict[str, Any]]:
        return await self.request("GET", f"tasks/board/{board_id}") or []

    async def create_task(self, board_id: str, name: str) -> Dict[str, Any]:
        return await self.request("POST", "tasks", json={"boardId": board_id, "name": name})

    async def update_task(self, task_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PATCH", f"tasks/{task_id}", json=fields)

    async def update_task_status(self, task_id: str, status: str) -> None:
        await self.request("PATCH", f"tasks/{task_id}/status", json={"status": status})

    async def reorder_column(self, board_id: str, status: str, ordered_task_ids: List[str]) -> None:
        await self.request(
            "PATCH",
            f"tasks/board/{board_id}/reorder",
            json={"status": status, "orderedTaskIds": ordered_task_ids},
        )

    async def get_assignees(self, task_id: str) -> List[str]:
        rows = await self.request("GET", f"tasks/{task_id}/assignees") or []
        return [str(r.get("userId")) for r in rows if r.get("userId")]

    async def set_assignees(self, task_id: str, user_ids: List[str]) -> None:
        await self.request("PATCH", f"tasks/{task_id}/assignees", json={"userIds": user_ids})

    async def delete_task(self, task_id: str) -> None:
        await self.request("DELETE", f"tasks/{task_id}")
