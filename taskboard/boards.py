"""
BoardCache: boards visible to the session, their membership, and the
active board selection.

Board mutations are confirm-then-apply: the local cache changes only after
the server accepts. Membership changes re-fetch the member list instead of
patching it.

Active board:
  NONE → SELECTED      first successful fetch (persisted choice or first board)
  SELECTED → SELECTED  explicit selection, or the active board disappeared
  SELECTED → NONE      only when the board list becomes empty
"""
import asyncio
import logging
import sqlite3
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .api import ApiClient
from .errors import NotFoundError, TaskboardError, ValidationError
from .events import BOARDS_CHANGED, ACTIVE_BOARD_CHANGED, SyncEventBridge
from .mutations import MutationLog
from .schema import Board, BoardMember, BoardRole, User, unique
from .store import ACTIVE_BOARD_KEY, StateStore

logger = logging.getLogger(__name__)


def coerce_grantable_role(role: Union[BoardRole, str]) -> BoardRole:
    """Validate a role that may be granted to a collaborator."""
    if isinstance(role, BoardRole):
        value = role
    else:
        try:
            value = BoardRole(str(role).upper())
        except ValueError:
            raise ValidationError(f"Unknown role: {role}")
    if value == BoardRole.OWNER:
        raise ValidationError("Board ownership cannot be granted; a board has exactly one owner")
    return value


class BoardCache:
    """Local mirror of the session's boards."""

    def __init__(self, api: ApiClient, store: StateStore, events: SyncEventBridge):
        self.api = api
        self.store = store
        self.events = events
        self.mutations = MutationLog()

        self.boards: List[Board] = []
        self.active_board_id: Optional[str] = None

        self.is_fetching_boards = False
        self.is_creating_board = False
        self.is_renaming_board = False
        self.is_deleting_board = False
        self.error: Optional[str] = None

        self._generation = 0
        self._active_listeners: List[Callable[[Optional[str], Optional[str]], None]] = []

    # ──────────────────────────────────────────
    # Lookup + active board
    # ──────────────────────────────────────────

    def get(self, board_id: Optional[str]) -> Optional[Board]:
        for b in self.boards:
            if b.id == board_id:
                return b
        return None

    def active_board(self) -> Optional[Board]:
        """The active board, falling back to the first board."""
        if not self.boards:
            return None
        return self.get(self.active_board_id) or self.boards[0]

    def on_active_board_changed(self, callback: Callable[[Optional[str], Optional[str]], None]) -> None:
        """Register callback(board_id, previous); runs synchronously on every change."""
        self._active_listeners.append(callback)

    def select_board(self, board_id: str) -> None:
        """Explicit user selection."""
        if self.get(board_id) is None:
            raise ValidationError(f"Unknown board: {board_id}")
        self._set_active(board_id)

    def _set_active(self, board_id: Optional[str]) -> None:
        previous = self.active_board_id
        if board_id == previous:
            return
        self.active_board_id = board_id
        self._persist_active(board_id)
        logger.info(f"Active board: {previous} -> {board_id}")
        # Listeners run before any await so no stale task slice survives the switch
        for callback in list(self._active_listeners):
            callback(board_id, previous)
        self.events.emit(ACTIVE_BOARD_CHANGED, board_id=board_id, previous=previous)

    def _persist_active(self, board_id: Optional[str]) -> None:
        try:
            if board_id:
                self.store.set(ACTIVE_BOARD_KEY, board_id)
            else:
                self.store.delete(ACTIVE_BOARD_KEY)
        except sqlite3.Error as e:
            logger.warning(f"Could not persist active board {board_id}: {e}")

    def _settle_active(self) -> None:
        ids = [b.id for b in self.boards]
        if self.active_board_id in ids:
            return
        persisted = self.store.get(ACTIVE_BOARD_KEY)
        if persisted in ids:
            self._set_active(persisted)
        else:
            self._set_active(ids[0] if ids else None)

    def _changed(self) -> None:
        self.events.emit(BOARDS_CHANGED, boards=list(self.boards))

    # ──────────────────────────────────────────
    # Error handling
    # ──────────────────────────────────────────

    async def _fail(self, error: Exception, op: str, default: str) -> None:
        """Record and report a failed operation; the caller re-raises."""
        message = (error.message if isinstance(error, TaskboardError) else "") or default
        self.error = message
        self.events.error(message, op=op)
        if isinstance(error, NotFoundError) and op != "fetch_boards":
            await self._refetch()

    async def _refetch(self) -> None:
        try:
            await self.fetch_boards()
        except TaskboardError as e:
            logger.warning(f"Board refetch after 404 failed: {e}")

    # ──────────────────────────────────────────
    # Boards
    # ──────────────────────────────────────────

    async def fetch_boards(self) -> List[Board]:
        """Fetch all visible boards, keeping cached members the response omits."""
        generation = self._generation
        self.is_fetching_boards = True
        self.error = None
        try:
            incoming = await self.api.list_boards()
        except TaskboardError as e:
            self.is_fetching_boards = False
            await self._fail(e, "fetch_boards", "Failed to fetch boards")
            raise

        if generation != self._generation:
            logger.debug("Dropping board list for a reset session")
            return self.boards

        prev_by_id = {b.id: b for b in self.boards}
        merged = []
        for data in incoming:
            board = Board.from_dict(data)
            prev = prev_by_id.get(board.id)
            if data.get("members") is None and prev is not None:
                board.members = list(prev.members)
            merged.append(board)

        self.boards = merged
        self.is_fetching_boards = False
        self._settle_active()
        self._changed()
        return self.boards

    async def create_board(self, name: str) -> Board:
        trimmed = (name or "").strip()
        if not trimmed:
            raise ValidationError("Board name is required")

        generation = self._generation
        m = self.mutations.begin("board.create", "", target=trimmed)
        self.is_creating_board = True
        self.error = None
        try:
            data = await self.api.create_board(trimmed)
        except TaskboardError as e:
            m.roll_back(str(e))
            if generation != self._generation:
                raise
            self.is_creating_board = False
            await self._fail(e, "create_board", "Failed to create board")
            raise

        created = Board.from_dict(data or {})
        m.entity_id = created.id
        m.commit()
        if generation != self._generation:
            logger.debug(f"Dropping created board {created.id} for a reset session")
            return created
        if self.get(created.id) is None:
            self.boards = self.boards + [created]
        self.is_creating_board = False
        self._set_active(created.id)
        self._changed()
        self.events.success("Board created", op="create_board")
        return created

    async def rename_board(self, board_id: str, name: str) -> None:
        """Rename after server confirmation. Owner-only; the caller checks."""
        trimmed = (name or "").strip()
        if not trimmed:
            raise ValidationError("Board name is required")

        board = self.get(board_id)
        m = self.mutations.begin("board.rename", board_id,
                                 previous=board.name if board else None, target=trimmed)
        self.is_renaming_board = True
        self.error = None
        try:
            await self.api.rename_board(board_id, trimmed)
        except TaskboardError as e:
            self.is_renaming_board = False
            m.roll_back(str(e))
            await self._fail(e, "rename_board", "Failed to rename board")
            raise

        m.commit()
        self.is_renaming_board = False
        if self.mutations.should_apply(m):
            self.mutations.mark_applied(m)
            board = self.get(board_id)
            if board is not None:
                board.name = trimmed
                self._changed()
        self.events.success("Board renamed", op="rename_board")

    async def delete_board(self, board_id: str) -> None:
        """Delete after server confirmation; reselect if it was active."""
        m = self.mutations.begin("board.delete", board_id)
        self.is_deleting_board = True
        self.error = None
        try:
            await self.api.delete_board(board_id)
        except TaskboardError as e:
            self.is_deleting_board = False
            m.roll_back(str(e))
            await self._fail(e, "delete_board", "Failed to delete board")
            raise

        m.commit()
        self.boards = [b for b in self.boards if b.id != board_id]
        self.is_deleting_board = False
        if self.active_board_id == board_id:
            self._set_active(self.boards[0].id if self.boards else None)
        self._changed()
        self.events.success("Board deleted", op="delete_board")

    # ──────────────────────────────────────────
    # Membership
    # ──────────────────────────────────────────

    async def _lookup_users(self, ids: List[str]) -> Dict[str, User]:
        """Resolve profiles by id; unresolvable ids are simply absent."""
        if not ids:
            return {}
        try:
            rows = await self.api.users_batch(ids)
            return {u.id: u for u in (User.from_dict(r) for r in rows)}
        except TaskboardError as e:
            logger.info(f"Batch user lookup failed ({e}), falling back to per-id lookups")

        async def one(user_id: str) -> Optional[User]:
            try:
                return User.from_dict(await self.api.get_user(user_id) or {"id": user_id})
            except TaskboardError as e:
                logger.debug(f"User lookup failed for {user_id}: {e}")
                return None

        found = await asyncio.gather(*(one(i) for i in ids))
        return {u.id: u for u in found if u is not None}

    async def fetch_board_members(self, board_id: str) -> List[BoardMember]:
        """Fetch membership and enrich it with profile info."""
        try:
            raw = await self.api.list_members(board_id)
        except TaskboardError as e:
            await self._fail(e, "fetch_board_members", "Failed to load members")
            raise

        roles: Dict[str, Any] = {}
        for row in raw:
            user_id = str(row.get("userId") or "")
            if user_id and user_id not in roles:
                roles[user_id] = row.get("role")
        ids = unique(roles)
        users = await self._lookup_users(ids)

        members = []
        for user_id in ids:
            role = BoardRole.from_str(roles[user_id])
            user = users.get(user_id)
            if user is None:
                members.append(BoardMember.placeholder(user_id, role))
            else:
                members.append(BoardMember(
                    user_id=user_id,
                    display_name=user.display_name or user_id,
                    email=user.email,
                    role=role,
                ))

        board = self.get(board_id)
        if board is not None:
            board.members = members
            self._changed()
        return members

    async def search_users(self, q: str) -> List[User]:
        query = (q or "").strip()
        if not query:
            return []
        try:
            rows = await self.api.search_users(query)
        except TaskboardError as e:
            await self._fail(e, "search_users", "User search failed")
            raise
        return [User.from_dict(r) for r in rows]

    async def _membership_call(
        self, op: str, board_id: str, user_id: str,
        call: Callable[[], Awaitable[None]], success: str, default: str,
    ) -> None:
        if not user_id:
            raise ValidationError("A user is required")
        m = self.mutations.begin(f"board.{op}", board_id, target=user_id)
        self.error = None
        try:
            await call()
        except TaskboardError as e:
            m.roll_back(str(e))
            await self._fail(e, op, default)
            raise
        m.commit()
        self.events.success(success, op=op)
        await self.fetch_board_members(board_id)

    async def share_board(self, board_id: str, user_id: str, role: Union[BoardRole, str]) -> None:
        """Owner-only; the caller checks."""
        value = coerce_grantable_role(role)
        await self._membership_call(
            "share_board", board_id, user_id,
            lambda: self.api.share_board(board_id, user_id, value.value),
            "Member added", "Failed to share board",
        )

    async def update_member_role(self, board_id: str, user_id: str, role: Union[BoardRole, str]) -> None:
        """Owner-only; the caller checks."""
        value = coerce_grantable_role(role)
        await self._membership_call(
            "update_member_role", board_id, user_id,
            lambda: self.api.update_member_role(board_id, user_id, value.value),
            "Role updated", "Failed to update role",
        )

    async def remove_member(self, board_id: str, user_id: str) -> None:
        """Owner-only; the caller checks. Task assignments are left alone."""
        await self._membership_call(
            "remove_member", board_id, user_id,
            lambda: self.api.remove_member(board_id, user_id),
            "Member removed", "Failed to remove member",
        )

    # ──────────────────────────────────────────
    # Housekeeping
    # ──────────────────────────────────────────

    def clear_error(self) -> None:
        self.error = None

    def reset(self) -> None:
        """Drop everything (sign-out). In-flight fetches are ignored when they land."""
        self._generation += 1
        self.boards = []
        self.is_fetching_boards = False
        self.is_creating_board = False
        self.is_renaming_board = False
        self.is_deleting_board = False
        self.error = None
        self.mutations.clear()
        self._set_active(None)
        self._changed()
