"""
HostelTracker: the use cases behind every API route.

The tracker is built once at startup from an explicit store, credential
service and image storage, so tests can hand it in-memory fakes. Each method
loads the records it needs, asks the access policy, then writes through the
store. Methods return stored dicts; ``public_user`` and
``HostelTracker.render_complaint`` shape them for responses.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from credentials import CredentialService
from database import ATTENDANCE, COMPLAINT, HOSTEL, LEAVE_REQUEST, USER, BaseStore
from errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from lifecycle import ComplaintLifecycle, timeline, validate_complaint
from policy import Action, Actor, enforce, list_scope
from schemas import (
    COMPLAINT_CATEGORIES,
    COMPLAINT_STATUSES,
    LEAVE_STATUSES,
    MIN_PASSWORD_LENGTH,
    OPEN_STATUSES,
    AttendanceIn,
    HostelIn,
    HostelUpdate,
    LeaveRequestIn,
    ProfileUpdate,
    RegisterRequest,
)
from storage import ImageStorage, discard, upload_all

logger = logging.getLogger(__name__)

LEAVE_DECISIONS = ("approved", "rejected")


def public_user(user: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k != "password_hash"}


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class HostelTracker:
    def __init__(self, store: BaseStore, credentials: CredentialService, images: ImageStorage):
        self.store = store
        self.credentials = credentials
        self.images = images
        self.lifecycle = ComplaintLifecycle(store)

    # ---------------------------------------------------------------------
    # Accounts
    # ---------------------------------------------------------------------
    def _get_user(self, user_id: str) -> Dict[str, Any]:
        user = self.store.get_document(USER, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def _active_hostel(self, name: Optional[str]) -> str:
        if not name:
            raise ValidationError("hostel is required", {"field": "hostel"})
        hostel = self.store.find_document(HOSTEL, {"name": name})
        if not hostel or not hostel.get("is_active", True):
            raise ValidationError(f"Unknown or inactive hostel: {name}", {"field": "hostel"})
        return hostel["name"]

    def register(self, data: RegisterRequest) -> Tuple[str, Dict[str, Any]]:
        email = data.email.lower()
        if self.store.find_document(USER, {"email": email}):
            raise ConflictError("User already exists", {"field": "email"})

        user: Dict[str, Any] = {
            "name": data.name.strip(),
            "email": email,
            "password_hash": self.credentials.hash_password(data.password),
            "role": data.role,
            "is_active": True,
        }
        user["hostel"] = self._active_hostel(_clean(data.hostel))
        if data.role == "student":
            for field in ("room_number", "roll_number"):
                if not _clean(getattr(data, field)):
                    raise ValidationError(f"{field} is required for students", {"field": field})
            user.update({
                "room_number": _clean(data.room_number),
                "department": _clean(data.department),
                "year_of_study": _clean(data.year_of_study),
                "roll_number": _clean(data.roll_number),
            })

        created = self.store.create_document(USER, user)
        logger.info("Registered %s %s", created["role"], created["id"])
        return self.credentials.issue_token(created), created

    def login(self, email: str, password: str) -> Tuple[str, Dict[str, Any]]:
        user = self.store.find_document(USER, {"email": email.lower()})
        if not user or not self.credentials.verify_password(password, user.get("password_hash", "")):
            logger.info("Failed login attempt")
            raise AuthenticationError("Invalid credentials")
        if not user.get("is_active", True):
            raise AuthenticationError("Account is deactivated")
        logger.info("User %s logged in", user["id"])
        return self.credentials.issue_token(user), user

    def authenticate(self, token: str) -> Dict[str, Any]:
        payload = self.credentials.decode_token(token)
        user = self.store.get_document(USER, payload["sub"])
        if not user:
            raise AuthenticationError("User not found")
        if not user.get("is_active", True):
            raise AuthenticationError("Account is deactivated")
        return user

    def seed_admin(self, email: str, password: str, name: str = "Administrator") -> Optional[Dict[str, Any]]:
        email = email.lower()
        if self.store.find_document(USER, {"email": email}):
            return None
        admin = self.store.create_document(USER, {
            "name": name,
            "email": email,
            "password_hash": self.credentials.hash_password(password),
            "role": "admin",
            "is_active": True,
        })
        logger.info("Seeded admin account %s", admin["id"])
        return admin

    def update_profile(self, user: Mapping[str, Any], data: ProfileUpdate) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if _clean(data.name):
            fields["name"] = _clean(data.name)
        if user["role"] == "student":
            for field in ("room_number", "department", "year_of_study"):
                value = _clean(getattr(data, field))
                if value:
                    fields[field] = value
        if not fields:
            return dict(user)
        updated = self.store.update_document(USER, user["id"], fields)
        if updated is None:
            raise NotFoundError("User not found")
        return updated

    def change_password(self, user: Mapping[str, Any], current_password: str, new_password: str) -> None:
        if not self.credentials.verify_password(current_password, user.get("password_hash", "")):
            raise ValidationError("Current password is incorrect", {"field": "current_password"})
        self._set_password(user["id"], new_password)

    def _set_password(self, user_id: str, new_password: str) -> None:
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters", {"field": "new_password"}
            )
        updated = self.store.update_document(
            USER, user_id, {"password_hash": self.credentials.hash_password(new_password)}
        )
        if updated is None:
            raise NotFoundError("User not found")

    # ---------------------------------------------------------------------
    # Hostels
    # ---------------------------------------------------------------------
    def _get_hostel(self, hostel_id: str) -> Dict[str, Any]:
        hostel = self.store.get_document(HOSTEL, hostel_id)
        if not hostel:
            raise NotFoundError("Hostel not found")
        return hostel

    def _hostel_in_use(self, name: str) -> bool:
        return (
            self.store.count_documents(USER, {"hostel": name}) > 0
            or self.store.count_documents(COMPLAINT, {"hostel": name}) > 0
        )

    def list_active_hostels(self) -> List[Dict[str, Any]]:
        hostels = self.store.get_documents(HOSTEL, {"is_active": True})
        return sorted(hostels, key=lambda h: h["name"])

    def list_hostels_with_stats(self, actor: Actor) -> List[Dict[str, Any]]:
        enforce(actor, Action.MANAGE_HOSTEL)
        result = []
        for hostel in sorted(self.store.get_documents(HOSTEL), key=lambda h: h["name"]):
            name = hostel["name"]
            result.append({
                **hostel,
                "user_count": self.store.count_documents(USER, {"hostel": name}),
                "complaint_count": self.store.count_documents(COMPLAINT, {"hostel": name}),
                "active_complaint_count": self.store.count_documents(
                    COMPLAINT, {"hostel": name, "status": {"$in": list(OPEN_STATUSES)}}
                ),
            })
        return result

    def create_hostel(self, actor: Actor, data: HostelIn) -> Dict[str, Any]:
        enforce(actor, Action.MANAGE_HOSTEL)
        hostel = self.store.create_document(HOSTEL, data.model_dump())
        logger.info("Hostel %s (%s) created by %s", hostel["name"], hostel["id"], actor.id)
        return hostel

    def update_hostel(self, actor: Actor, hostel_id: str, data: HostelUpdate) -> Dict[str, Any]:
        enforce(actor, Action.MANAGE_HOSTEL)
        hostel = self._get_hostel(hostel_id)
        fields = data.model_dump(exclude_none=True)
        if "name" in fields:
            fields["name"] = fields["name"].strip()
            if not fields["name"]:
                raise ValidationError("name must not be blank", {"field": "name"})
            if fields["name"] != hostel["name"] and self._hostel_in_use(hostel["name"]):
                raise ConflictError("Cannot rename a hostel that has users or complaints")
        updated = self.store.update_document(HOSTEL, hostel_id, fields)
        if updated is None:
            raise NotFoundError("Hostel not found")
        return updated

    def toggle_hostel(self, actor: Actor, hostel_id: str) -> Dict[str, Any]:
        enforce(actor, Action.MANAGE_HOSTEL)
        hostel = self._get_hostel(hostel_id)
        updated = self.store.update_document(HOSTEL, hostel_id, {"is_active": not hostel.get("is_active", True)})
        if updated is None:
            raise NotFoundError("Hostel not found")
        logger.info("Hostel %s is_active=%s", hostel_id, updated["is_active"])
        return updated

    def delete_hostel(self, actor: Actor, hostel_id: str) -> None:
        enforce(actor, Action.MANAGE_HOSTEL)
        hostel = self._get_hostel(hostel_id)
        if self._hostel_in_use(hostel["name"]):
            raise ConflictError("Hostel has users or complaints; deactivate it instead")
        if not self.store.delete_document(HOSTEL, hostel_id):
            raise NotFoundError("Hostel not found")
        logger.info("Hostel %s deleted by %s", hostel_id, actor.id)

    # ---------------------------------------------------------------------
    # User management
    # ---------------------------------------------------------------------
    def list_users(self, actor: Actor, role: Optional[str] = None) -> List[Dict[str, Any]]:
        enforce(actor, Action.MANAGE_USERS)
        users = self.store.get_documents(USER, {"role": role} if role else {}, newest_first=True)
        return [public_user(u) for u in users]

    def toggle_user(self, actor: Actor, user_id: str) -> Dict[str, Any]:
        enforce(actor, Action.MANAGE_USERS)
        if user_id == actor.id:
            raise ConflictError("You cannot deactivate your own account")
        user = self._get_user(user_id)
        updated = self.store.update_document(USER, user_id, {"is_active": not user.get("is_active", True)})
        if updated is None:
            raise NotFoundError("User not found")
        logger.info("User %s is_active=%s (by %s)", user_id, updated["is_active"], actor.id)
        return public_user(updated)

    def reset_password(self, actor: Actor, user_id: str, new_password: str) -> None:
        enforce(actor, Action.MANAGE_USERS)
        self._get_user(user_id)
        self._set_password(user_id, new_password)
        logger.info("Password reset for %s by %s", user_id, actor.id)

    # ---------------------------------------------------------------------
    # Complaints
    # ---------------------------------------------------------------------
    def _get_complaint(self, complaint_id: str) -> Dict[str, Any]:
        complaint = self.store.get_document(COMPLAINT, complaint_id)
        if not complaint:
            raise NotFoundError("Complaint not found")
        return complaint

    def _user_summary(self, user_id: Optional[str], cache: Dict[str, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if user_id is None:
            return None
        if user_id not in cache:
            user = self.store.get_document(USER, user_id) or {}
            cache[user_id] = {"id": user_id, "name": user.get("name"), "email": user.get("email")}
        return cache[user_id]

    def render_complaint(
        self, complaint: Mapping[str, Any], cache: Optional[Dict[str, Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """Shape a stored complaint for a response.

        Adds the synthesized ``timeline`` and replaces every user id
        (``created_by``, ``handled_by`` and each entry's ``updated_by``) with
        ``{id, name, email}``. A user that no longer exists keeps its id with
        null name and email.
        """
        cache = {} if cache is None else cache

        def with_author(entry: Mapping[str, Any]) -> Dict[str, Any]:
            return {**entry, "updated_by": self._user_summary(entry["updated_by"], cache)}

        return {
            **complaint,
            "created_by": self._user_summary(complaint["created_by"], cache),
            "handled_by": self._user_summary(complaint.get("handled_by"), cache),
            "updates": [with_author(u) for u in complaint.get("updates") or []],
            "timeline": [with_author(e) for e in timeline(complaint)],
        }

    def render_complaints(self, complaints: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        cache: Dict[str, Dict[str, Any]] = {}
        return [self.render_complaint(c, cache) for c in complaints]

    def list_complaints(
        self, actor: Actor, status: Optional[str] = None, category: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        enforce(actor, Action.LIST_COMPLAINTS)
        query = list_scope(actor)
        if status:
            if status not in COMPLAINT_STATUSES:
                raise ValidationError(f"Unknown status: {status}", {"field": "status"})
            query["status"] = status
        if category:
            if category not in COMPLAINT_CATEGORIES:
                raise ValidationError(f"Unknown category: {category}", {"field": "category"})
            query["category"] = category
        return self.store.get_documents(COMPLAINT, query, newest_first=True)

    def get_complaint(self, actor: Actor, complaint_id: str) -> Dict[str, Any]:
        complaint = self._get_complaint(complaint_id)
        enforce(actor, Action.READ_COMPLAINT, complaint)
        return complaint

    def create_complaint(
        self,
        author: Mapping[str, Any],
        data: Mapping[str, Any],
        files: Sequence[Tuple[str, bytes]] = (),
    ) -> Dict[str, Any]:
        enforce(Actor.from_user(author), Action.CREATE_COMPLAINT)
        validate_complaint(data, image_count=len(files))
        stored = upload_all(self.images, files) if files else []
        try:
            return self.lifecycle.create(author, data, [image.url for image in stored])
        except Exception:
            discard(self.images, stored)
            raise

    def update_complaint_status(
        self, actor: Actor, complaint_id: str, status: Optional[str], comment: Optional[str]
    ) -> Dict[str, Any]:
        complaint = self._get_complaint(complaint_id)
        return self.lifecycle.transition(complaint, status, comment, actor)

    # ---------------------------------------------------------------------
    # Leave requests
    # ---------------------------------------------------------------------
    def request_leave(self, author: Mapping[str, Any], data: LeaveRequestIn) -> Dict[str, Any]:
        enforce(Actor.from_user(author), Action.CREATE_LEAVE)
        if data.to_date < data.from_date:
            raise ValidationError("to_date must not be before from_date", {"field": "to_date"})
        leave = self.store.create_document(LEAVE_REQUEST, {
            "student_id": author["id"],
            "hostel": author.get("hostel"),
            "from_date": data.from_date.isoformat(),
            "to_date": data.to_date.isoformat(),
            "reason": data.reason.strip(),
            "status": "pending",
            "comment": None,
            "decided_by": None,
            "decided_at": None,
        })
        logger.info("Leave request %s filed by %s", leave["id"], author["id"])
        return leave

    def list_leave(self, actor: Actor, status: Optional[str] = None) -> List[Dict[str, Any]]:
        enforce(actor, Action.LIST_LEAVE)
        query = list_scope(actor, owner_field="student_id")
        if status:
            if status not in LEAVE_STATUSES:
                raise ValidationError(f"Unknown status: {status}", {"field": "status"})
            query["status"] = status
        return self.store.get_documents(LEAVE_REQUEST, query, newest_first=True)

    def decide_leave(
        self, actor: Actor, leave_id: str, status: Optional[str], comment: Optional[str] = None
    ) -> Dict[str, Any]:
        leave = self.store.get_document(LEAVE_REQUEST, leave_id)
        if not leave:
            raise NotFoundError("Leave request not found")
        enforce(actor, Action.DECIDE_LEAVE, leave)
        if status not in LEAVE_DECISIONS:
            raise ValidationError(f"status must be one of: {', '.join(LEAVE_DECISIONS)}", {"field": "status"})
        if leave["status"] != "pending":
            raise ConflictError(f"Leave request is already {leave['status']}")

        updated = self.store.update_document(
            LEAVE_REQUEST,
            leave_id,
            {
                "status": status,
                "comment": _clean(comment),
                "decided_by": actor.id,
                "decided_at": datetime.now(timezone.utc),
            },
            expected={"status": "pending"},
        )
        if updated is None:
            raise ConflictError("Leave request was already decided")
        logger.info("Leave request %s %s by %s", leave_id, status, actor.id)
        return updated

    # ---------------------------------------------------------------------
    # Attendance
    # ---------------------------------------------------------------------
    def mark_attendance(self, actor: Actor, data: AttendanceIn) -> Dict[str, Any]:
        student = self.store.get_document(USER, data.student_id)
        if not student or student.get("role") != "student":
            raise NotFoundError("Student not found")
        enforce(actor, Action.MARK_ATTENDANCE, student)
        return self.store.upsert_document(
            ATTENDANCE,
            {"student_id": student["id"], "date": data.date.isoformat()},
            {"hostel": student.get("hostel"), "status": data.status, "marked_by": actor.id},
        )

    def list_attendance(
        self, actor: Actor, on: Optional[date] = None, student_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        enforce(actor, Action.LIST_ATTENDANCE)
        query = list_scope(actor, owner_field="student_id")
        if on:
            query["date"] = on.isoformat()
        if student_id:
            if query.get("student_id", student_id) != student_id:
                return []
            query["student_id"] = student_id
        records = self.store.get_documents(ATTENDANCE, query)
        return sorted(records, key=lambda r: (r["date"], r["student_id"]), reverse=True)
