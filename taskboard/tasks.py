"""
TaskCache: tasks of the active board.

Status moves are optimistic (drag-and-drop needs immediate feedback) and
roll back on failure. Creates, edits and deletes apply only after the
server answers; the server is the id authority.

Write barrier: reset() bumps the fetch generation, so a fetch issued for a
board that is no longer the target never lands in the cache.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from .api import ApiClient
from .errors import NotFoundError, TaskboardError, ValidationError
from .events import TASKS_CHANGED, SyncEventBridge
from .mutations import Mutation, MutationLog
from .schema import LANES, UNSET, Task, TaskStatus, unique

logger = logging.getLogger(__name__)


class TaskCache:
    """Local mirror of one board's tasks, in server order."""

    def __init__(self, api: ApiClient, events: SyncEventBridge):
        self.api = api
        self.events = events
        self.mutations = MutationLog()

        self.tasks: List[Task] = []
        self.board_id: Optional[str] = None
        self.is_loading = False
        self.error: Optional[str] = None

        self._generation = 0

    # ──────────────────────────────────────────
    # Lookup + ordering
    # ──────────────────────────────────────────

    def get(self, task_id: str) -> Optional[Task]:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def lane_order(self, status: TaskStatus) -> List[str]:
        """Ordered task ids of one lane."""
        return [t.id for t in self.tasks if t.status == status]

    def lanes(self) -> Dict[TaskStatus, List[Task]]:
        return {lane: [t for t in self.tasks if t.status == lane] for lane in LANES}

    def apply_lane_orders(self, orders: Dict[TaskStatus, List[str]]) -> None:
        """
        Rewrite the task list so each given lane follows the given id order.

        Lanes not in `orders` keep their current order. The result is
        grouped lane by lane; ids unknown to the cache are ignored.
        """
        by_id = {t.id: t for t in self.tasks}
        placed = set()
        rebuilt = []
        for lane in LANES:
            ids = orders[lane] if lane in orders else self.lane_order(lane)
            for task_id in ids:
                task = by_id.get(task_id)
                if task is not None and task_id not in placed:
                    placed.add(task_id)
                    rebuilt.append(task)
        # Anything not mentioned (e.g. status changed mid-move) stays at the end
        rebuilt.extend(t for t in self.tasks if t.id not in placed)
        self.tasks = rebuilt
        self._changed()

    def stats(self) -> Dict[str, Any]:
        """Per-lane counts and completion rate (whole percent)."""
        by_status = {lane.value: 0 for lane in LANES}
        for t in self.tasks:
            by_status[t.status.value] += 1
        total = len(self.tasks)
        done = by_status[TaskStatus.DONE.value]
        return {
            "total": total,
            "done": done,
            "by_status": by_status,
            "completion_rate": round(done * 100 / total) if total else 0,
        }

    def _changed(self) -> None:
        self.events.emit(TASKS_CHANGED, board_id=self.board_id)

    # ──────────────────────────────────────────
    # Error handling
    # ──────────────────────────────────────────

    async def _fail(self, error: Exception, op: str, default: str) -> None:
        """Record and report a failed operation; the caller re-raises."""
        message = (error.message if isinstance(error, TaskboardError) else "") or default
        self.error = message
        self.is_loading = False
        self.events.error(message, op=op)
        if isinstance(error, NotFoundError) and op != "fetch_tasks" and self.board_id:
            try:
                await self.fetch_tasks_by_board(self.board_id)
            except TaskboardError as e:
                logger.warning(f"Task refetch after 404 failed: {e}")

    def _require(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} is not on the active board")
        return task

    # ──────────────────────────────────────────
    # Fetch
    # ──────────────────────────────────────────

    async def fetch_tasks_by_board(self, board_id: Optional[str]) -> List[Task]:
        """Replace the slice with the board's tasks, then fill in assignees."""
        if not board_id:
            self.reset()
            return []

        if board_id != self.board_id:
            self.reset(board_id)
        self._generation += 1
        generation = self._generation
        self.is_loading = True
        self.error = None

        try:
            rows = await self.api.list_tasks(board_id)
        except TaskboardError as e:
            if generation != self._generation:
                raise
            await self._fail(e, "fetch_tasks", "Failed to fetch tasks")
            raise

        if generation != self._generation or board_id != self.board_id:
            logger.debug(f"Dropping stale task list for board {board_id}")
            return self.tasks

        self.tasks = [Task.from_dict(r, board_id) for r in rows]
        self.is_loading = False
        self._changed()

        await asyncio.gather(*(self._load_assignees(t.id, generation) for t in list(self.tasks)))
        return self.tasks

    async def _load_assignees(self, task_id: str, generation: int) -> None:
        try:
            user_ids = await self.api.get_assignees(task_id)
        except TaskboardError as e:
            logger.debug(f"Assignee fetch failed for task {task_id}: {e}")
            return
        if generation != self._generation:
            return
        task = self.get(task_id)
        if task is not None:
            task.assigned_to = unique(user_ids)
            self._changed()

    async def fetch_task_assignees(self, task_id: str) -> List[str]:
        try:
            user_ids = unique(await self.api.get_assignees(task_id))
        except TaskboardError as e:
            await self._fail(e, "fetch_task_assignees", "Failed to load assignees")
            raise
        task = self.get(task_id)
        if task is not None:
            task.assigned_to = user_ids
            self._changed()
        return user_ids

    # ──────────────────────────────────────────
    # Mutations
    # ──────────────────────────────────────────

    async def create_task(self, board_id: str, name: str) -> Task:
        """Create on the server, then prepend the canonical task."""
        trimmed = (name or "").strip()
        if not trimmed:
            raise ValidationError("Task name is required")
        if not board_id:
            raise ValidationError("A board is required")

        m = self.mutations.begin("task.create", "", target=trimmed)
        self.is_loading = True
        self.error = None
        try:
            data = await self.api.create_task(board_id, trimmed)
        except TaskboardError as e:
            m.roll_back(str(e))
            await self._fail(e, "create_task", "Failed to create task")
            raise

        task = Task.from_dict(data or {}, board_id)
        m.entity_id = task.id
        m.commit()
        self.is_loading = False
        if board_id == self.board_id and self.get(task.id) is None:
            self.tasks = [task] + self.tasks
            self._changed()
        return task

    async def update_task(
        self,
        task_id: str,
        name: Any = UNSET,
        description: Any = UNSET,
        deadline: Any = UNSET,
        assigned_to: Any = UNSET,
    ) -> Task:
        """
        Partial update. UNSET fields are left out of the request; None is sent
        as an explicit null (e.g. clearing a deadline).
        """
        payload: Dict[str, Any] = {}
        if name is not UNSET:
            trimmed = (name or "").strip()
            if not trimmed:
                raise ValidationError("Task name is required")
            payload["name"] = trimmed
        if description is not UNSET:
            payload["description"] = description
        if deadline is not UNSET:
            payload["deadline"] = deadline
        if assigned_to is not UNSET:
            payload["assignedTo"] = unique(assigned_to or [])

        current = self.get(task_id)
        m = self.mutations.begin("task.update", task_id, target=payload)
        self.is_loading = True
        self.error = None
        try:
            data = await self.api.update_task(task_id, payload)
        except TaskboardError as e:
            m.roll_back(str(e))
            await self._fail(e, "update_task", "Failed to update task")
            raise
        m.commit()
        self.is_loading = False

        current = self.get(task_id) or current
        updated = Task.from_dict(data or {}, current.board_id if current else "")
        if current is not None:
            # Lane moves go through update_task_status; never let an edit response undo one
            updated.status = current.status
            if (data or {}).get("assignedTo") is None:
                updated.assigned_to = list(current.assigned_to)

        if not self.mutations.should_apply(m):
            logger.debug(f"Dropping stale update response for task {task_id}")
            return updated
        self.mutations.mark_applied(m)

        self.tasks = [updated if t.id == task_id else t for t in self.tasks]
        self._changed()
        return updated

    async def update_task_status(self, task_id: str, status: TaskStatus) -> Optional[Mutation]:
        """
        Optimistic lane move. The cache flips before the request; on failure
        it reverts unless a newer mutation of the same task took over.
        Returns None when the task is already in that lane.
        """
        status = TaskStatus(status)
        task = self._require(task_id)
        if task.status == status:
            return None

        m = self.mutations.begin("task.status", task_id, previous=task.status, target=status)
        task.status = status
        self._changed()

        try:
            await self.api.update_task_status(task_id, status.value)
        except TaskboardError as e:
            current = self.get(task_id)
            if self.mutations.is_latest(m) and current is not None and current.status == status:
                current.status = m.previous
                self._changed()
            m.roll_back(str(e))
            await self._fail(e, "update_task_status", "Failed to update status")
            raise

        m.commit()
        self.mutations.mark_applied(m)
        return m

    async def reorder_column(self, board_id: str, status: TaskStatus, ordered_task_ids: List[str]) -> None:
        """Send a lane's full order. The caller splices the cache itself."""
        if not board_id or not ordered_task_ids:
            return
        status = TaskStatus(status)
        m = self.mutations.begin("task.reorder", f"{board_id}:{status.value}", target=list(ordered_task_ids))
        try:
            await self.api.reorder_column(board_id, status.value, list(ordered_task_ids))
        except TaskboardError as e:
            m.roll_back(str(e))
            await self._fail(e, "reorder_column", "Failed to save order")
            raise
        m.commit()

    async def set_task_assignees(self, task_id: str, user_ids: List[str]) -> List[str]:
        """Replace the full assignee set."""
        user_ids = unique(user_ids or [])
        task = self.get(task_id)
        m = self.mutations.begin("task.assignees", task_id,
                                 previous=list(task.assigned_to) if task else None, target=user_ids)
        try:
            await self.api.set_assignees(task_id, user_ids)
        except TaskboardError as e:
            m.roll_back(str(e))
            await self._fail(e, "set_task_assignees", "Failed to update assignees")
            raise
        m.commit()
        if self.mutations.should_apply(m):
            self.mutations.mark_applied(m)
            task = self.get(task_id)
            if task is not None:
                task.assigned_to = list(user_ids)
                self._changed()
        return user_ids

    async def delete_task(self, task_id: str) -> None:
        """Delete on the server, then drop locally."""
        m = self.mutations.begin("task.delete", task_id)
        self.is_loading = True
        self.error = None
        try:
            await self.api.delete_task(task_id)
        except TaskboardError as e:
            m.roll_back(str(e))
            await self._fail(e, "delete_task", "Failed to delete task")
            raise
        m.commit()
        self.is_loading = False
        self.tasks = [t for t in self.tasks if t.id != task_id]
        self._changed()
        self.events.success("Task deleted", op="delete_task")

    # ──────────────────────────────────────────
    # Housekeeping
    # ──────────────────────────────────────────

    def clear_error(self) -> None:
        self.error = None

    def reset(self, board_id: Optional[str] = None) -> None:
        """Discard the slice and invalidate in-flight fetches."""
        self._generation += 1
        self.tasks = []
        self.board_id = board_id
        self.is_loading = False
        self.error = None
        self._changed()
