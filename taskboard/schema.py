"""
Board and task schema.

Lanes:
  TODO → IN_PROGRESS → DONE  (any lane may move to any other)

Wire payloads use camelCase keys; the dataclasses use snake_case and
convert in from_dict/to_dict.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Optional, List, Dict, Any, Iterable, Union

from .errors import ValidationError


class TaskStatus(Enum):
    """Lane a task sits in."""
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "TaskStatus":
        try:
            return cls[(value or "").upper()]
        except KeyError:
            return cls.TODO


# Display order of the board columns
LANES = (TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.DONE)


class BoardRole(Enum):
    """Role of a member on a board, strongest first."""
    OWNER = "OWNER"
    EDITOR = "EDITOR"
    VIEWER = "VIEWER"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "BoardRole":
        try:
            return cls[(value or "").upper()]
        except KeyError:
            return cls.VIEWER


class _Unset:
    """Marker for a field left out of a partial update."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


# Omitted field; distinct from None, which is an explicit clear on the wire
UNSET: Any = _Unset()


def unique(ids: Iterable[str]) -> List[str]:
    """De-duplicate ids, keeping first occurrence order."""
    seen = set()
    out = []
    for i in ids:
        if i and i not in seen:
            seen.add(i)
            out.append(i)
    return out


@dataclass
class User:
    """A human identity as returned by the auth service."""
    id: str
    email: str = ""
    display_name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=str(data.get("id", "")),
            email=data.get("email") or "",
            display_name=data.get("username") or data.get("name") or "",
        )


@dataclass
class BoardMember:
    """One collaborator on a board."""
    user_id: str
    display_name: str = ""
    email: str = ""
    role: BoardRole = BoardRole.VIEWER

    @classmethod
    def placeholder(cls, user_id: str, role: BoardRole = BoardRole.VIEWER) -> "BoardMember":
        """Member whose profile could not be resolved; shown by bare id."""
        return cls(user_id=user_id, display_name=user_id, email="", role=role)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoardMember":
        user_id = str(data.get("userId") or data.get("user_id") or "")
        return cls(
            user_id=user_id,
            display_name=data.get("displayName") or data.get("name") or data.get("username") or user_id,
            email=data.get("email") or "",
            role=BoardRole.from_str(data.get("role")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "displayName": self.display_name,
            "email": self.email,
            "role": self.role.value,
        }


@dataclass
class Board:
    """A named collection of tasks with an owner and role-scoped members."""
    id: str
    name: str
    owner_id: str
    members: List[BoardMember] = field(default_factory=list)

    def __post_init__(self):
        # members is a set keyed by user_id
        seen = set()
        deduped = []
        for m in self.members:
            if m.user_id not in seen:
                seen.add(m.user_id)
                deduped.append(m)
        self.members = deduped

    def member(self, user_id: Optional[str]) -> Optional[BoardMember]:
        """Membership row for a user, or None."""
        for m in self.members:
            if m.user_id == user_id:
                return m
        return None

    def effective_members(self) -> List[BoardMember]:
        """
        Members with ownership overlaid.

        The owner always appears exactly once, first, with role OWNER, even
        when the server left it out of the member list. Any other row
        claiming OWNER is reported as EDITOR.
        """
        owner = self.member(self.owner_id)
        if owner is None:
            owner_row = BoardMember.placeholder(self.owner_id, BoardRole.OWNER)
        else:
            owner_row = BoardMember(
                user_id=owner.user_id,
                display_name=owner.display_name,
                email=owner.email,
                role=BoardRole.OWNER,
            )
        rest = []
        for m in self.members:
            if m.user_id == self.owner_id:
                continue
            role = BoardRole.EDITOR if m.role == BoardRole.OWNER else m.role
            rest.append(BoardMember(m.user_id, m.display_name, m.email, role))
        return [owner_row] + rest

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Board":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            owner_id=str(data.get("ownerId") or data.get("owner_id") or ""),
            members=[BoardMember.from_dict(m) for m in data.get("members") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "ownerId": self.owner_id,
            "members": [m.to_dict() for m in self.members],
        }


@dataclass
class Task:
    """A task on a board."""
    id: str
    board_id: str
    name: str
    status: TaskStatus = TaskStatus.TODO
    description: Optional[str] = None
    deadline: Optional[str] = None       # ISO-8601 UTC, as stored by the server
    assigned_to: List[str] = field(default_factory=list)
    updated_at: Optional[str] = None

    def __post_init__(self):
        self.assigned_to = unique(self.assigned_to)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], board_id: str = "") -> "Task":
        return cls(
            id=str(data.get("id", "")),
            board_id=str(data.get("boardId") or board_id or ""),
            name=data.get("name", ""),
            status=TaskStatus.from_str(data.get("status")),
            description=data.get("description"),
            deadline=data.get("deadline"),
            assigned_to=list(data.get("assignedTo") or []),
            updated_at=data.get("updatedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "boardId": self.board_id,
            "name": self.name,
            "status": self.status.value,
            "description": self.description,
            "deadline": self.deadline,
            "assignedTo": list(self.assigned_to),
            "updatedAt": self.updated_at,
        }


def _to_wire(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def deadline_from_inputs(
    date_str: str = "",
    time_str: str = "",
    had_deadline: bool = False,
    tz: Optional[tzinfo] = None,
) -> Union[str, None, _Unset]:
    """
    Turn deadline form fields into the value to send.

    Returns an ISO-8601 UTC string, None (explicit clear), or UNSET (leave
    the field out of the update). A date without a time means end of that
    day in local time. Malformed input raises ValidationError.
    """
    date_str = (date_str or "").strip()
    time_str = (time_str or "").strip()

    if date_str:
        try:
            local = datetime.fromisoformat(f"{date_str}T{time_str or '23:59:59'}")
        except ValueError:
            raise ValidationError(f"Invalid deadline: {date_str} {time_str}".strip())
        if tz is not None:
            local = local.replace(tzinfo=tz)
        return _to_wire(local)

    if had_deadline:
        return None
    return UNSET
