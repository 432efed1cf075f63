"""
Drag-and-drop reordering.

A drop (task, target lane, target index) becomes:
  1. a local splice of the touched lane orders,
  2. an optimistic status change when the lane differs,
  3. one reorder call per touched lane with its full new order.

Status and reorder calls run concurrently; the server treats them as
independent, idempotent operations. A failed reorder is reported and left
in place until the next full fetch; a failed status change is rolled back
by TaskCache.
"""
import asyncio
import logging
from typing import Dict, List

from .errors import NotFoundError, TaskboardError
from .schema import TaskStatus
from .tasks import TaskCache

logger = logging.getLogger(__name__)


class ReorderEngine:
    """Turns drop gestures into lane orders and server calls."""

    def __init__(self, tasks: TaskCache):
        self.tasks = tasks

    def preview(self, task_id: str, target_status: TaskStatus, target_index: int) -> Dict[TaskStatus, List[str]]:
        """Lane orders the move would produce, without applying anything."""
        task = self.tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} is not on the active board")
        target_status = TaskStatus(target_status)
        source_status = task.status

        source = [i for i in self.tasks.lane_order(source_status) if i != task_id]
        if target_status == source_status:
            target = source
        else:
            target = [i for i in self.tasks.lane_order(target_status) if i != task_id]

        index = max(0, min(int(target_index), len(target)))
        target.insert(index, task_id)

        orders = {source_status: source}
        orders[target_status] = target
        return orders

    async def move_task(self, task_id: str, target_status: TaskStatus, target_index: int) -> Dict[TaskStatus, List[str]]:
        """
        Apply a drop locally, then sync status and lane orders with the server.

        If the status call fails the task returns to its source lane but keeps
        its place in the list, so it sits at the edge of the source lane that
        faces the target lane (end of TODO when dropped on DONE).
        """
        target_status = TaskStatus(target_status)
        task = self.tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} is not on the active board")
        source_status = task.status
        board_id = task.board_id or self.tasks.board_id

        orders = self.preview(task_id, target_status, target_index)
        before = {lane: self.tasks.lane_order(lane) for lane in orders}
        if source_status == target_status and orders[target_status] == before[target_status]:
            return orders

        self.tasks.apply_lane_orders(orders)
        logger.info(
            f"Move {task_id}: {source_status.value} -> {target_status.value} @ {target_index}"
        )

        calls = []
        if target_status != source_status:
            calls.append(self.tasks.update_task_status(task_id, target_status))
        for lane, ids in orders.items():
            calls.append(self.tasks.reorder_column(board_id, lane, ids))

        results = await asyncio.gather(*calls, return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        for r in errors:
            if not isinstance(r, TaskboardError):
                raise r
        if errors:
            raise errors[0]
        return orders
