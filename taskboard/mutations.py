"""
Mutation lifecycle.

  PENDING → COMMITTED
  PENDING → ROLLED_BACK

Each mutation draws a sequence number in issuance order. A server
response is applied only if no later-issued mutation of the same kind on
the same entity has already been applied, so an out-of-order response cannot
overwrite a newer one.
"""
import itertools
from collections import deque
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional


class MutationState(Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class Mutation:
    """One client-side change to one entity."""
    seq: int
    kind: str                       # e.g. "task.status", "board.rename"
    entity_id: str
    previous: Any = None
    target: Any = None
    state: MutationState = MutationState.PENDING
    error: Optional[str] = None
    issued_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    settled_at: Optional[str] = None

    def transition_to(self, new_state: MutationState, error: Optional[str] = None) -> bool:
        """Settle the mutation. Returns False if it was already settled."""
        allowed_next = {
            MutationState.PENDING: [MutationState.COMMITTED, MutationState.ROLLED_BACK],
            MutationState.COMMITTED: [],
            MutationState.ROLLED_BACK: [],
        }
        if new_state not in allowed_next[self.state]:
            return False
        self.state = new_state
        self.error = error
        self.settled_at = datetime.now(timezone.utc).isoformat()
        return True

    def commit(self) -> bool:
        return self.transition_to(MutationState.COMMITTED)

    def roll_back(self, error: str = "") -> bool:
        return self.transition_to(MutationState.ROLLED_BACK, error=error or None)

    @property
    def settled(self) -> bool:
        return self.state != MutationState.PENDING


class MutationLog:
    """Issues sequence numbers and keeps recent mutations for inspection."""

    MAX_HISTORY = 500

    def __init__(self):
        self._counter = itertools.count(1)
        self._issued: Dict[str, int] = {}    # kind:entity_id -> latest issued seq
        self._applied: Dict[str, int] = {}   # kind:entity_id -> latest applied seq
        self.history: Deque[Mutation] = deque(maxlen=self.MAX_HISTORY)

    @staticmethod
    def _key(m: Mutation) -> str:
        return f"{m.kind}:{m.entity_id}"

    def begin(self, kind: str, entity_id: str, previous: Any = None, target: Any = None) -> Mutation:
        m = Mutation(seq=next(self._counter), kind=kind, entity_id=entity_id,
                     previous=previous, target=target)
        self._issued[self._key(m)] = m.seq
        self.history.append(m)
        return m

    def is_latest(self, m: Mutation) -> bool:
        """True if no later mutation of the same kind and entity has been issued."""
        return self._issued.get(self._key(m)) == m.seq

    def should_apply(self, m: Mutation) -> bool:
        """True unless a later-issued mutation of the same kind and entity was already applied."""
        return m.seq > self._applied.get(self._key(m), 0)

    def mark_applied(self, m: Mutation) -> None:
        key = self._key(m)
        if m.seq > self._applied.get(key, 0):
            self._applied[key] = m.seq

    def pending(self, entity_id: Optional[str] = None) -> List[Mutation]:
        return [
            m for m in self.history
            if not m.settled and (entity_id is None or m.entity_id == entity_id)
        ]

    def last(self, kind: Optional[str] = None) -> Optional[Mutation]:
        for m in reversed(self.history):
            if kind is None or m.kind == kind:
                return m
        return None

    def clear(self) -> None:
        self._issued.clear()
        self._applied.clear()
        self.history.clear()
