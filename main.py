import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings, configure_logging
from credentials import CredentialService
from database import create_store
from errors import AuthenticationError, TrackerError, ValidationError
from policy import Actor
from schemas import (
    MAX_IMAGES,
    AttendanceIn,
    AttendanceOut,
    AuthResponse,
    ChangePasswordRequest,
    ComplaintOut,
    HostelIn,
    HostelOut,
    HostelStatsOut,
    HostelUpdate,
    LeaveDecision,
    LeaveRequestIn,
    LeaveRequestOut,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    ResetPasswordRequest,
    StatusChangeRequest,
    UserOut,
)
from storage import CloudinaryImageStorage, InMemoryImageStorage
from tracker import HostelTracker, public_user

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------------
security = HTTPBearer(auto_error=False)


def get_tracker(request: Request) -> HostelTracker:
    return request.app.state.tracker


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(security),
    tracker: HostelTracker = Depends(get_tracker),
) -> dict:
    if creds is None or not creds.credentials:
        raise AuthenticationError("Missing bearer token")
    return tracker.authenticate(creds.credentials)


def get_actor(user: dict = Depends(get_current_user)) -> Actor:
    return Actor.from_user(user)


router = APIRouter(prefix="/api")


def auth_response(tracker: HostelTracker, token: str, user: dict) -> dict:
    return {"token": token, "expires_in": tracker.credentials.expires_in, "user": public_user(user)}


# ---------------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------------
@router.get("/health")
def health(tracker: HostelTracker = Depends(get_tracker)):
    return {"status": "ok", "store": type(tracker.store).__name__}


# ---------------------------------------------------------------------------------
# Auth routes
# ---------------------------------------------------------------------------------
@router.post("/register", response_model=AuthResponse, status_code=201)
def register(data: RegisterRequest, tracker: HostelTracker = Depends(get_tracker)):
    token, user = tracker.register(data)
    return auth_response(tracker, token, user)


@router.post("/login", response_model=AuthResponse)
def login(data: LoginRequest, tracker: HostelTracker = Depends(get_tracker)):
    token, user = tracker.login(data.email, data.password)
    return auth_response(tracker, token, user)


# ---------------------------------------------------------------------------------
# Profile (self-service)
# ---------------------------------------------------------------------------------
@router.get("/profile", response_model=UserOut)
def get_profile(user: dict = Depends(get_current_user)):
    return public_user(user)


@router.put("/profile", response_model=UserOut)
def update_profile(data: ProfileUpdate, user: dict = Depends(get_current_user),
                   tracker: HostelTracker = Depends(get_tracker)):
    return public_user(tracker.update_profile(user, data))


@router.put("/change-password")
def change_password(body: ChangePasswordRequest, user: dict = Depends(get_current_user),
                    tracker: HostelTracker = Depends(get_tracker)):
    tracker.change_password(user, body.current_password, body.new_password)
    return {"message": "Password changed successfully"}


# ---------------------------------------------------------------------------------
# Hostels
# ---------------------------------------------------------------------------------
@router.get("/hostels", response_model=List[HostelOut])
def list_hostels(tracker: HostelTracker = Depends(get_tracker)):
    return tracker.list_active_hostels()


@router.get("/admin/hostels", response_model=List[HostelStatsOut])
def list_hostels_admin(actor: Actor = Depends(get_actor), tracker: HostelTracker = Depends(get_tracker)):
    return tracker.list_hostels_with_stats(actor)


@router.post("/hostels", response_model=HostelOut, status_code=201)
def create_hostel(hostel: HostelIn, actor: Actor = Depends(get_actor),
                  tracker: HostelTracker = Depends(get_tracker)):
    return tracker.create_hostel(actor, hostel)


@router.put("/hostels/{hostel_id}", response_model=HostelOut)
def update_hostel(hostel_id: str, body: HostelUpdate, actor: Actor = Depends(get_actor),
                  tracker: HostelTracker = Depends(get_tracker)):
    return tracker.update_hostel(actor, hostel_id, body)


@router.put("/hostels/{hostel_id}/toggle-status", response_model=HostelOut)
def toggle_hostel(hostel_id: str, actor: Actor = Depends(get_actor),
                  tracker: HostelTracker = Depends(get_tracker)):
    return tracker.toggle_hostel(actor, hostel_id)


@router.delete("/hostels/{hostel_id}")
def delete_hostel(hostel_id: str, actor: Actor = Depends(get_actor),
                  tracker: HostelTracker = Depends(get_tracker)):
    tracker.delete_hostel(actor, hostel_id)
    return {"deleted": True}


# ---------------------------------------------------------------------------------
# Complaints
# ---------------------------------------------------------------------------------
@router.get("/complaints", response_model=List[ComplaintOut])
def list_complaints(status: Optional[str] = None, category: Optional[str] = None,
                    actor: Actor = Depends(get_actor), tracker: HostelTracker = Depends(get_tracker)):
    return tracker.render_complaints(tracker.list_complaints(actor, status=status, category=category))


@router.post("/complaints", response_model=ComplaintOut, status_code=201)
def create_complaint(
    title: str = Form(""),
    category: str = Form(""),
    description: str = Form(""),
    room_number: Optional[str] = Form(None),
    images: List[UploadFile] = File(default=[]),
    user: dict = Depends(get_current_user),
    tracker: HostelTracker = Depends(get_tracker),
):
    # hostel is taken from the author's profile, never from the form
    if len(images) > MAX_IMAGES:
        raise ValidationError(f"At most {MAX_IMAGES} images are allowed", {"field": "images"})
    files = [(upload.filename or "", upload.file.read()) for upload in images]
    data = {"title": title, "category": category, "description": description, "room_number": room_number}
    return tracker.render_complaint(tracker.create_complaint(user, data, files))


@router.get("/complaints/{complaint_id}", response_model=ComplaintOut)
def get_complaint(complaint_id: str, actor: Actor = Depends(get_actor),
                  tracker: HostelTracker = Depends(get_tracker)):
    return tracker.render_complaint(tracker.get_complaint(actor, complaint_id))


@router.put("/complaints/{complaint_id}", response_model=ComplaintOut)
def update_complaint_status(complaint_id: str, body: StatusChangeRequest, actor: Actor = Depends(get_actor),
                            tracker: HostelTracker = Depends(get_tracker)):
    return tracker.render_complaint(tracker.update_complaint_status(actor, complaint_id, body.status, body.comment))


# ---------------------------------------------------------------------------------
# Leave requests
# ---------------------------------------------------------------------------------
@router.post("/leave-requests", response_model=LeaveRequestOut, status_code=201)
def request_leave(req: LeaveRequestIn, user: dict = Depends(get_current_user),
                  tracker: HostelTracker = Depends(get_tracker)):
    return tracker.request_leave(user, req)


@router.get("/leave-requests", response_model=List[LeaveRequestOut])
def list_leave_requests(status: Optional[str] = None, actor: Actor = Depends(get_actor),
                        tracker: HostelTracker = Depends(get_tracker)):
    return tracker.list_leave(actor, status=status)


@router.put("/leave-requests/{leave_id}", response_model=LeaveRequestOut)
def decide_leave_request(leave_id: str, body: LeaveDecision, actor: Actor = Depends(get_actor),
                         tracker: HostelTracker = Depends(get_tracker)):
    return tracker.decide_leave(actor, leave_id, body.status, body.comment)


# ---------------------------------------------------------------------------------
# Attendance
# ---------------------------------------------------------------------------------
@router.post("/attendance", response_model=AttendanceOut)
def mark_attendance(a: AttendanceIn, actor: Actor = Depends(get_actor),
                    tracker: HostelTracker = Depends(get_tracker)):
    return tracker.mark_attendance(actor, a)


@router.get("/attendance", response_model=List[AttendanceOut])
def list_attendance(on: Optional[date] = Query(None, alias="date"), student_id: Optional[str] = None,
                    actor: Actor = Depends(get_actor), tracker: HostelTracker = Depends(get_tracker)):
    return tracker.list_attendance(actor, on=on, student_id=student_id)


# ---------------------------------------------------------------------------------
# Admin: users
# ---------------------------------------------------------------------------------
@router.get("/admin/users", response_model=List[UserOut])
def list_users(role: Optional[str] = None, actor: Actor = Depends(get_actor),
               tracker: HostelTracker = Depends(get_tracker)):
    return tracker.list_users(actor, role=role)


@router.put("/admin/users/{user_id}/toggle-status", response_model=UserOut)
def toggle_user_status(user_id: str, actor: Actor = Depends(get_actor),
                       tracker: HostelTracker = Depends(get_tracker)):
    return tracker.toggle_user(actor, user_id)


@router.put("/admin/users/{user_id}/reset-password")
def reset_user_password(user_id: str, body: ResetPasswordRequest, actor: Actor = Depends(get_actor),
                        tracker: HostelTracker = Depends(get_tracker)):
    tracker.reset_password(actor, user_id, body.new_password)
    return {"message": "Password reset successfully"}


# ---------------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------------
def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "message": "Invalid request",
            "details": {"errors": jsonable_encoder(exc.errors(), exclude={"input", "ctx", "url"})},
        },
    )


def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "internal_error", "message": "Internal server error"})


# ---------------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------------
def build_tracker(settings: Settings) -> HostelTracker:
    store = create_store(settings.database_backend, settings.database_url, settings.database_name)
    credentials = CredentialService(settings.jwt_secret, settings.jwt_expires_min, settings.bcrypt_rounds)
    if settings.cloudinary_enabled:
        images = CloudinaryImageStorage(
            settings.cloudinary_cloud_name, settings.cloudinary_api_key, settings.cloudinary_api_secret
        )
    else:
        logger.warning("Cloudinary is not configured; complaint images are kept in memory")
        images = InMemoryImageStorage()
    tracker = HostelTracker(store, credentials, images)
    if settings.admin_email and settings.admin_password:
        tracker.seed_admin(settings.admin_email, settings.admin_password, settings.admin_name)
    return tracker


def create_app(tracker: Optional[HostelTracker] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title="Hostel Complaint Tracker API")
    app.state.tracker = tracker or build_tracker(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TrackerError, tracker_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/")
    def root():
        return {"message": "Hostel Complaint Tracker API running"}

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Settings.from_env().port)
