"""
Complaint lifecycle: creation, status transitions and the rendered timeline.

States: Submitted -> In Progress -> Resolved | Rejected.

Any of In Progress, Resolved or Rejected may be chosen from a non-terminal
state (Submitted or In Progress); Resolved and Rejected are terminal. A
transition writes ``status``, ``handled_by`` and the new ``updates`` entry in
one conditional store write, so the stored status always equals the status of
the last update entry (or Submitted while there are none).

The Submitted state is never stored as an update. ``timeline`` synthesizes it
from ``created_at``/``created_by`` when a complaint is rendered.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from database import COMPLAINT, BaseStore
from errors import ConflictError, NotFoundError, ValidationError
from policy import Action, Actor, enforce
from schemas import (
    COMPLAINT_CATEGORIES,
    IN_PROGRESS,
    MAX_COMMENT_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_IMAGES,
    MAX_TITLE_LENGTH,
    OPEN_STATUSES,
    REJECTED,
    RESOLVED,
    SUBMITTED,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)

TRANSITION_TARGETS = (IN_PROGRESS, RESOLVED, REJECTED)
SUBMITTED_COMMENT = "Complaint submitted"


def _required_text(value: Optional[str], field: str, max_length: int) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required", {"field": field})
    if len(text) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters", {"field": field}
        )
    return text


def validate_complaint(data: Mapping[str, Any], image_count: int = 0) -> Dict[str, Any]:
    """Validate the fields of a new complaint without touching any store.

    Returns the cleaned ``title``, ``category``, ``description`` and
    ``room_number`` (None when not given).
    """
    title = _required_text(data.get("title"), "title", MAX_TITLE_LENGTH)
    description = _required_text(data.get("description"), "description", MAX_DESCRIPTION_LENGTH)
    category = (data.get("category") or "").strip()
    if category not in COMPLAINT_CATEGORIES:
        raise ValidationError(
            f"category must be one of: {', '.join(COMPLAINT_CATEGORIES)}", {"field": "category"}
        )
    if image_count > MAX_IMAGES:
        raise ValidationError(f"At most {MAX_IMAGES} images are allowed", {"field": "images"})
    return {
        "title": title,
        "category": category,
        "description": description,
        "room_number": (data.get("room_number") or "").strip() or None,
    }


def validate_transition(current_status: str, new_status: Optional[str], comment: Optional[str]) -> str:
    """Check a requested transition against the state machine.

    Returns the cleaned comment. Raises ValidationError for bad input and
    ConflictError when the complaint is already closed.
    """
    if not new_status:
        raise ValidationError("status is required", {"field": "status"})
    if new_status not in TRANSITION_TARGETS:
        raise ValidationError(
            f"status must be one of: {', '.join(TRANSITION_TARGETS)}", {"field": "status"}
        )
    cleaned = _required_text(comment, "comment", MAX_COMMENT_LENGTH)
    if current_status in TERMINAL_STATUSES:
        raise ConflictError(f"Complaint is already {current_status}")
    return cleaned


def timeline(complaint: Mapping[str, Any]) -> List[Dict[str, Any]]:
    submitted = {
        "status": SUBMITTED,
        "comment": SUBMITTED_COMMENT,
        "updated_by": complaint["created_by"],
        "timestamp": complaint["created_at"],
    }
    return [submitted] + list(complaint.get("updates") or [])


def current_status(complaint: Mapping[str, Any]) -> str:
    updates = complaint.get("updates") or []
    return updates[-1]["status"] if updates else SUBMITTED


class ComplaintLifecycle:
    def __init__(self, store: BaseStore):
        self.store = store

    def create(
        self,
        author: Mapping[str, Any],
        data: Mapping[str, Any],
        images: Sequence[str] = (),
    ) -> Dict[str, Any]:
        """Create a complaint for ``author`` (a stored student record).

        ``hostel`` always comes from the author's profile; any hostel in
        ``data`` is ignored. ``room_number`` falls back to the profile's.
        """
        enforce(Actor.from_user(author), Action.CREATE_COMPLAINT)
        if not author.get("hostel"):
            raise ValidationError("Student profile has no hostel", {"field": "hostel"})
        fields = validate_complaint(data, image_count=len(images))

        room_number = fields["room_number"] or author.get("room_number")
        complaint = self.store.create_document(COMPLAINT, {
            "title": fields["title"],
            "category": fields["category"],
            "description": fields["description"],
            "hostel": author["hostel"],
            "room_number": room_number,
            "status": SUBMITTED,
            "created_by": author["id"],
            "handled_by": None,
            "images": list(images),
            "updates": [],
        })
        logger.info("Complaint %s created by %s in %s", complaint["id"], author["id"], author["hostel"])
        return complaint

    def transition(
        self,
        complaint: Mapping[str, Any],
        new_status: Optional[str],
        comment: Optional[str],
        actor: Actor,
    ) -> Dict[str, Any]:
        enforce(actor, Action.UPDATE_COMPLAINT_STATUS, complaint)
        cleaned = validate_transition(current_status(complaint), new_status, comment)

        entry = {
            "status": new_status,
            "comment": cleaned,
            "updated_by": actor.id,
            "timestamp": datetime.now(timezone.utc),
        }
        updated = self.store.update_document(
            COMPLAINT,
            complaint["id"],
            {"status": new_status, "handled_by": actor.id},
            expected={"status": {"$in": list(OPEN_STATUSES)}},
            push={"updates": entry},
        )
        if updated is None:
            latest = self.store.get_document(COMPLAINT, complaint["id"])
            if latest is None:
                raise NotFoundError("Complaint not found")
            raise ConflictError(f"Complaint is already {latest['status']}")

        logger.info(
            "Complaint %s moved %s -> %s by %s",
            complaint["id"], complaint["status"], new_status, actor.id,
        )
        return updated
