"""
Access policy: who may do what to which record.

Every handler asks ``authorize`` (or ``enforce``) instead of branching on the
role itself. Decisions are pure; callers load the target record first and pass
it in. Targets are the stored dicts, so a complaint is matched on ``hostel``
and ``created_by`` and leave/attendance records on ``hostel`` and
``student_id``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from errors import AuthorizationError

logger = logging.getLogger(__name__)


class Action(str, Enum):
    CREATE_COMPLAINT = "create complaint"
    READ_COMPLAINT = "read complaint"
    UPDATE_COMPLAINT_STATUS = "update complaint status"
    LIST_COMPLAINTS = "list complaints"
    MANAGE_HOSTEL = "manage hostel"
    MANAGE_USERS = "manage users"
    CREATE_LEAVE = "create leave"
    READ_LEAVE = "read leave"
    LIST_LEAVE = "list leave"
    DECIDE_LEAVE = "decide leave"
    MARK_ATTENDANCE = "mark attendance"
    READ_ATTENDANCE = "read attendance"
    LIST_ATTENDANCE = "list attendance"


@dataclass(frozen=True)
class Actor:
    id: str
    role: str
    hostel: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_user(cls, user: Mapping[str, Any]) -> "Actor":
        return cls(id=user["id"], role=user["role"], hostel=user.get("hostel"), email=user.get("email"))


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def _deny(reason: str) -> Decision:
    return Decision(False, reason)


def _same_hostel(actor: Actor, target: Mapping[str, Any]) -> bool:
    return actor.hostel is not None and target.get("hostel") == actor.hostel


def _owner_field(action: Action) -> str:
    return "created_by" if action in (Action.READ_COMPLAINT, Action.LIST_COMPLAINTS) else "student_id"


def authorize(actor: Actor, action: Action, target: Optional[Mapping[str, Any]] = None) -> Decision:
    """Decide whether ``actor`` may perform ``action`` on ``target``.

    Rules are evaluated in order and the first match wins. Admins pass every
    rule; wardens are confined to their own hostel; students to records they
    own, and they never change a complaint's status.
    """
    if action is Action.CREATE_COMPLAINT:
        if actor.role == "student":
            return ALLOW
        return _deny("Only students can create complaints")

    if action is Action.CREATE_LEAVE:
        if actor.role == "student":
            return ALLOW
        return _deny("Only students can request leave")

    if action in (Action.MANAGE_HOSTEL, Action.MANAGE_USERS):
        if actor.role == "admin":
            return ALLOW
        return _deny("Admin access required")

    if actor.role == "admin":
        return ALLOW

    if action in (Action.LIST_COMPLAINTS, Action.LIST_LEAVE, Action.LIST_ATTENDANCE):
        # scope is applied by ``list_scope``
        if actor.role in ("warden", "student"):
            return ALLOW
        return _deny("Unknown role")

    if action in (Action.UPDATE_COMPLAINT_STATUS, Action.DECIDE_LEAVE, Action.MARK_ATTENDANCE):
        if actor.role == "student":
            return _deny("Students cannot perform this action")
        if actor.role == "warden" and target is not None and _same_hostel(actor, target):
            return ALLOW
        return _deny("Record belongs to another hostel")

    if action in (Action.READ_COMPLAINT, Action.READ_LEAVE, Action.READ_ATTENDANCE):
        if target is None:
            return _deny("No record to check")
        if actor.role == "warden" and _same_hostel(actor, target):
            return ALLOW
        if actor.role == "student" and target.get(_owner_field(action)) == actor.id:
            return ALLOW
        return _deny("Access denied")

    return _deny("Unknown action")


def enforce(actor: Actor, action: Action, target: Optional[Mapping[str, Any]] = None) -> None:
    decision = authorize(actor, action, target)
    if not decision:
        logger.warning("Denied %s for %s %s: %s", action.value, actor.role, actor.id, decision.reason)
        raise AuthorizationError(decision.reason or "Access denied")


def list_scope(actor: Actor, owner_field: str = "created_by") -> Dict[str, Any]:
    """Store filter restricting a listing to what ``actor`` may see.

    Admin: everything. Warden: own hostel. Student: records they own.
    """
    if actor.role == "admin":
        return {}
    if actor.role == "warden":
        return {"hostel": actor.hostel}
    if actor.role == "student":
        return {owner_field: actor.id}
    raise AuthorizationError("Access denied")
