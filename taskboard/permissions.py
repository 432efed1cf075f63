"""
Role and capability resolution.

Pure functions with no caching; callers resolve again on every action.
"""
from dataclasses import dataclass
from typing import Optional

from .schema import Board, BoardRole


@dataclass(frozen=True)
class Permission:
    """Effective capability set of one user on one board."""
    role: BoardRole
    can_modify: bool
    is_owner: bool


VIEWER_ONLY = Permission(role=BoardRole.VIEWER, can_modify=False, is_owner=False)


def resolve(board: Optional[Board], user_id: Optional[str]) -> Permission:
    """
    Map (board, user) to an effective role.

    Default-deny: a user who is neither the owner nor listed as a member
    is a VIEWER. Ownership comes from board.owner_id only; a member row
    claiming OWNER for someone else counts as EDITOR.
    """
    if board is None or not user_id:
        return VIEWER_ONLY

    is_owner = board.owner_id == user_id
    if is_owner:
        role = BoardRole.OWNER
    else:
        member = board.member(user_id)
        role = member.role if member else BoardRole.VIEWER
        if role == BoardRole.OWNER:
            role = BoardRole.EDITOR

    return Permission(
        role=role,
        can_modify=role in (BoardRole.OWNER, BoardRole.EDITOR),
        is_owner=is_owner,
    )
