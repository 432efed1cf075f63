"""
Dashboard orchestrator: wires session, boards and tasks together, gates
every user action through the permission resolver, and owns transient
view state (selected task, open modal).
"""
import asyncio
import logging
from typing import Any, Coroutine, List, Optional, Set

from .boards import BoardCache
from .errors import AuthorizationError
from .events import SyncEventBridge
from .permissions import Permission, resolve
from .reorder import ReorderEngine
from .schema import UNSET, Board, BoardMember, BoardRole, Task, TaskStatus, User, deadline_from_inputs
from .session import Session
from .tasks import TaskCache

logger = logging.getLogger(__name__)


class Dashboard:
    """Consumer of BoardCache/TaskCache; holds no server state of its own."""

    def __init__(
        self,
        session: Session,
        boards: BoardCache,
        tasks: TaskCache,
        reorder: ReorderEngine,
        events: SyncEventBridge,
    ):
        self.session = session
        self.boards = boards
        self.tasks = tasks
        self.reorder = reorder
        self.events = events

        self.selected_task_id: Optional[str] = None
        self.open_modal: Optional[str] = None
        self._background: Set[asyncio.Task] = set()

        session.subscribe(self._on_session_changed)
        boards.on_active_board_changed(self._on_active_board_changed)

    # ──────────────────────────────────────────
    # Wiring
    # ──────────────────────────────────────────

    def _spawn(self, coro: Coroutine) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; background refresh skipped")
            coro.close()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._settled)

    def _settled(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            # Already recorded and reported by the cache that raised it
            logger.debug(f"Background refresh failed: {task.exception()}")

    async def wait_idle(self) -> None:
        """Wait for background refreshes triggered by session/board changes."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _on_session_changed(self, user: Optional[User]) -> None:
        self.selected_task_id = None
        self.open_modal = None
        self.boards.reset()
        self.tasks.reset()
        if user is not None:
            self._spawn(self.boards.fetch_boards())

    def _on_active_board_changed(self, board_id: Optional[str], previous: Optional[str]) -> None:
        # Discard the old slice before the new fetch can land
        self.tasks.reset(board_id)
        self.selected_task_id = None
        if board_id:
            self._spawn(self.tasks.fetch_tasks_by_board(board_id))

    async def load(self) -> List[Board]:
        """Fetch boards, then the active board's tasks."""
        boards = await self.boards.fetch_boards()
        await self.wait_idle()
        return boards

    # ──────────────────────────────────────────
    # Permission gate
    # ──────────────────────────────────────────

    @property
    def active_board(self) -> Optional[Board]:
        return self.boards.active_board()

    def permission(self) -> Permission:
        """Recomputed on every call."""
        return resolve(self.active_board, self.session.current_user_id)

    def _deny(self, message: str) -> None:
        self.events.error(message, op="permission")
        raise AuthorizationError(message)

    def _require_modify(self) -> Board:
        board = self.active_board
        if board is None or not self.permission().can_modify:
            self._deny("You have view-only access to this board")
        return board

    def _require_owner(self) -> Board:
        board = self.active_board
        if board is None or not self.permission().is_owner:
            self._deny("Only the board owner can do that")
        return board

    # ──────────────────────────────────────────
    # Boards
    # ──────────────────────────────────────────

    def select_board(self, board_id: str) -> None:
        self.boards.select_board(board_id)

    async def create_board(self, name: str) -> Board:
        if not self.session.current_user_id:
            self._deny("Sign in to create boards")
        board = await self.boards.create_board(name)
        await self.wait_idle()
        return board

    async def rename_board(self, name: str) -> None:
        board = self._require_owner()
        await self.boards.rename_board(board.id, name)

    async def delete_board(self) -> None:
        board = self._require_owner()
        await self.boards.delete_board(board.id)
        await self.wait_idle()

    async def open_members(self) -> List[BoardMember]:
        board = self.active_board
        if board is None:
            return []
        self.open_modal = "members"
        return await self.boards.fetch_board_members(board.id)

    async def search_users(self, q: str) -> List[User]:
        self._require_owner()
        return await self.boards.search_users(q)

    async def share_board(self, user_id: str, role: BoardRole = BoardRole.VIEWER) -> None:
        board = self._require_owner()
        await self.boards.share_board(board.id, user_id, role)

    async def update_member_role(self, user_id: str, role: BoardRole) -> None:
        board = self._require_owner()
        await self.boards.update_member_role(board.id, user_id, role)

    async def remove_member(self, user_id: str) -> None:
        board = self._require_owner()
        await self.boards.remove_member(board.id, user_id)

    # ──────────────────────────────────────────
    # Tasks
    # ──────────────────────────────────────────

    @property
    def selected_task(self) -> Optional[Task]:
        return self.tasks.get(self.selected_task_id) if self.selected_task_id else None

    def select_task(self, task_id: Optional[str]) -> None:
        self.selected_task_id = task_id
        self.open_modal = "task" if task_id else None

    def close_modal(self) -> None:
        self.open_modal = None
        self.selected_task_id = None

    async def create_task(self, name: str) -> Task:
        board = self._require_modify()
        return await self.tasks.create_task(board.id, name)

    async def update_task(self, task_id: str, **fields: Any) -> Task:
        self._require_modify()
        return await self.tasks.update_task(task_id, **fields)

    async def save_task_form(
        self,
        task_id: str,
        name: str,
        description: str = "",
        deadline_date: str = "",
        deadline_time: str = "",
        assigned_to: Any = UNSET,
    ) -> Task:
        """Submit the task edit form; the modal stays open if this raises."""
        self._require_modify()
        task = self.tasks.get(task_id)
        deadline = deadline_from_inputs(
            deadline_date, deadline_time, had_deadline=bool(task and task.deadline)
        )
        updated = await self.tasks.update_task(
            task_id, name=name, description=description,
            deadline=deadline, assigned_to=assigned_to,
        )
        self.close_modal()
        return updated

    async def set_status(self, task_id: str, status: TaskStatus) -> None:
        self._require_modify()
        await self.tasks.update_task_status(task_id, status)

    async def move_task(self, task_id: str, target_status: TaskStatus, target_index: int) -> None:
        """Drop handler for drag-and-drop."""
        self._require_modify()
        await self.reorder.move_task(task_id, target_status, target_index)

    async def set_assignees(self, task_id: str, user_ids: List[str]) -> List[str]:
        self._require_modify()
        return await self.tasks.set_task_assignees(task_id, user_ids)

    async def delete_task(self, task_id: str) -> None:
        self._require_modify()
        await self.tasks.delete_task(task_id)
        if self.selected_task_id == task_id:
            self.close_modal()

    def completion_rate(self) -> int:
        return self.tasks.stats()["completion_rate"]
