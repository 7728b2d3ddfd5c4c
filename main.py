import base64
import binascii
import csv
import io
import math
import os
import re
import secrets
import traceback
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from bson import ObjectId
from fastapi import Body, Depends, FastAPI, Query, Request, Response
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from rapidfuzz import fuzz
from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from starlette.datastructures import UploadFile

import auth
import schemas
from auth import (
    CurrentUser,
    clear_session_cookie,
    create_token,
    ensure_owner_or_role,
    hash_password,
    require_user,
    set_session_cookie,
    verify_password,
)
from database import (
    connect,
    create_document,
    ensure_indexes,
    get_by_id,
    get_db,
    log_activity,
    now,
    page_params,
    paginate,
    paginate_list,
    recent_activity,
    to_object_id,
    to_public,
    update_by_id,
    user_summary,
)
from errors import (
    AccountBlocked,
    ApiError,
    Conflict,
    Forbidden,
    NotFound,
    ValidationFailed,
    register_handlers,
)
from forms import (
    ADOPTION_WIZARD,
    ALERT_FORM,
    FOSTER_WIZARD,
    PET_POST_WIZARD,
    validate_submission,
)


# --- File Upload Configuration ---
UPLOAD_DIR = os.environ.get("UPLOAD_DIR", os.path.join("static", "uploads"))
MAX_IMAGE_BYTES = 5 * 1024 * 1024
IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
if not os.path.exists(UPLOAD_DIR):
    os.makedirs(UPLOAD_DIR)

VERIFICATION_TTL = timedelta(minutes=10)
RESET_TTL = timedelta(hours=1)
URGENCY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
EARTH_RADIUS_KM = 6371.0


# --- App Setup ---
app = FastAPI(title="SafeTails API")


def _record_unexpected(request: Request, exc: Exception):
    db = getattr(request.app.state, "db", None)
    if db is not None:
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        log_activity(db, f"Error handling {request.method} {request.url.path}: {exc}\n{tb}")


register_handlers(app, on_unexpected=_record_unexpected)

# Uploaded images
app.mount("/static/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


@app.on_event("startup")
def _connect_database():
    if getattr(app.state, "db", None) is not None:
        return
    client, db = connect()
    app.state.mongo_client = client
    app.state.db = db
    ensure_indexes(db)
    if auth.JWT_SECRET == auth.DEFAULT_JWT_SECRET:
        log_activity(db, "WARNING: JWT_SECRET is not set; using the development secret.")


@app.on_event("shutdown")
def _close_database():
    client = getattr(app.state, "mongo_client", None)
    if client is not None:
        client.close()
        app.state.mongo_client = None
        app.state.db = None


login_required = require_user()
admin_required = require_user("admin")
vet_required = require_user("vet")


# --- Utility Functions ---

def envelope(data: Any = None, message: Optional[str] = None, pagination: Optional[dict] = None, **extra) -> dict:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    if pagination is not None:
        body["pagination"] = pagination
    body.update(extra)
    return body


def parse_payload(model, payload: Dict[str, Any]):
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailed.from_errors(exc.errors())


def regex(value: str) -> dict:
    return {"$regex": re.escape(value.strip()), "$options": "i"}


def haversine_km(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2)
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_to(doc: dict, longitude: float, latitude: float) -> float:
    coords = (doc.get("location") or {}).get("coordinates") or [0.0, 0.0]
    return haversine_km(longitude, latitude, coords[0], coords[1])


def fuzzy_ratio(a: str, b: str) -> int:
    """Return a fuzzy match score between 0-100."""
    if not a or not b:
        return 0
    return int(fuzz.token_sort_ratio(a, b))


def queue_email(db: Database, to: str, subject: str, body: str):
    # picked up by the mail integration
    create_document(db, "outbox", {"to": to, "subject": subject, "body": body})


def require_doc(db: Database, collection_name: str, doc_id: str, label: str) -> dict:
    doc = get_by_id(db, collection_name, doc_id)
    if not doc:
        raise NotFound(f"{label} not found")
    return doc


def public_user(db: Database, user: dict) -> dict:
    data = to_public(user)
    if user.get("blockedBy"):
        blocker = get_by_id(db, "user", user["blockedBy"])
        data["blockedBy"] = {"id": str(blocker["_id"]), "name": blocker.get("name"), "email": blocker.get("email")} if blocker else None
    return data


def public_post(db: Database, post: dict) -> dict:
    data = to_public(post)
    data["author"] = user_summary(db, post.get("userId"))
    return data


def public_listing(db: Database, doc: dict, owner_field: str = "userId") -> dict:
    data = to_public(doc)
    data["owner"] = user_summary(db, doc.get(owner_field))
    return data


def actor_name(current_user: CurrentUser) -> str:
    return current_user.user.get("name") or current_user.claims.email


# --- 1. Authentication Endpoints ---

@app.post("/api/auth/register", status_code=201, tags=["Authentication"])
def register(payload: schemas.RegisterRequest, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise Conflict("User already exists", status_code=400)

    otp = f"{secrets.randbelow(10 ** 6):06d}"
    user = schemas.User(
        name=payload.name,
        email=email,
        password=hash_password(payload.password),
        role=payload.role,
        phone=payload.phone,
        address=payload.address,
        bio=payload.bio,
        emailVerificationToken=otp,
        emailVerificationExpires=now() + VERIFICATION_TTL,
    )
    user_id = create_document(db, "user", user)
    queue_email(db, email, "Verify your SafeTails account", f"Your verification code is {otp}. It expires in 10 minutes.")
    log_activity(db, f"New user registered: {payload.name} ({email})", actor=user_id)
    created = get_by_id(db, "user", user_id)
    return envelope(
        public_user(db, created),
        message="Registration successful. Please check your email for the verification code.",
    )


@app.post("/api/auth/verify-email", tags=["Authentication"])
def verify_email(payload: schemas.VerifyEmailRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        raise NotFound("User not found")
    if user.get("isEmailVerified"):
        raise ValidationFailed("Email already verified")
    expires = user.get("emailVerificationExpires")
    if user.get("emailVerificationToken") != payload.otp.strip() or not expires or expires < now():
        raise ValidationFailed("Invalid or expired verification code")
    update_by_id(db, "user", user["_id"], {"isEmailVerified": True},
                 unset=("emailVerificationToken", "emailVerificationExpires"))
    log_activity(db, f"User {user['email']} verified their email.", actor=user["_id"])
    return envelope(message="Email verified successfully")


@app.post("/api/auth/resend-verification", tags=["Authentication"])
def resend_verification(payload: schemas.EmailRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        raise NotFound("User not found")
    if user.get("isEmailVerified"):
        raise ValidationFailed("Email already verified")
    otp = f"{secrets.randbelow(10 ** 6):06d}"
    update_by_id(db, "user", user["_id"], {
        "emailVerificationToken": otp,
        "emailVerificationExpires": now() + VERIFICATION_TTL,
    })
    queue_email(db, user["email"], "Your new SafeTails verification code", f"Your verification code is {otp}. It expires in 10 minutes.")
    return envelope(message="Verification code sent")


@app.post("/api/auth/forgot-password", tags=["Authentication"])
def forgot_password(payload: schemas.EmailRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if user:
        token = secrets.token_urlsafe(32)
        update_by_id(db, "user", user["_id"], {
            "passwordResetToken": token,
            "passwordResetExpires": now() + RESET_TTL,
        })
        queue_email(db, user["email"], "Reset your SafeTails password", f"Use this token to reset your password: {token}. It expires in 1 hour.")
        log_activity(db, f"Password reset requested for {user['email']}.", actor=user["_id"])
    # same answer whether or not the account exists
    return envelope(message="If an account exists for this email, a reset link has been sent.")


@app.post("/api/auth/reset-password", tags=["Authentication"])
def reset_password(payload: schemas.ResetPasswordRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"passwordResetToken": payload.token, "passwordResetExpires": {"$gt": now()}})
    if not user:
        raise ValidationFailed("Invalid or expired reset token")
    update_by_id(db, "user", user["_id"], {"password": hash_password(payload.password)},
                 unset=("passwordResetToken", "passwordResetExpires"))
    log_activity(db, f"User {user['email']} reset their password.", actor=user["_id"])
    return envelope(message="Password reset successfully")


@app.post("/api/auth/login", tags=["Authentication"])
def login(payload: schemas.LoginRequest, request: Request, response: Response, db: Database = Depends(get_db)):
    # Rate limit check (per-IP)
    client_host, attempts, now_ts = auth.check_login_rate(request)

    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        auth.record_login_failure(client_host, attempts, now_ts)
        raise NotFound(
            "No account found with this email address. Please check your email or register for a new account.",
            error="User not found",
        )
    if not user.get("isActive", True):
        raise Forbidden(
            "Your account has been deactivated by an administrator. Please contact support for assistance.",
            error="Account is inactive",
        )
    if user.get("isBlocked"):
        raise AccountBlocked(auth.blocked_message(db, user), reason=user.get("blockReason"))
    if not verify_password(payload.password, user.get("password")):
        auth.record_login_failure(client_host, attempts, now_ts)
        raise ApiError("Invalid email or password.", error="Invalid password", status_code=401)

    # successful login: reset attempts
    auth.reset_login_attempts(client_host)
    set_session_cookie(response, create_token(user))
    log_activity(db, f"User {user['email']} logged in.", actor=user["_id"])
    return envelope(public_user(db, user), message="Login successful")


@app.post("/api/auth/logout", tags=["Authentication"])
def logout(response: Response):
    clear_session_cookie(response)
    return envelope(message="Logged out successfully")


@app.get("/api/auth/me", tags=["Authentication"])
def me(current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    return envelope(public_user(db, current_user.user))


# --- 2. Profile Endpoints ---

@app.put("/api/profile", tags=["Profile"])
def update_profile(payload: schemas.ProfileUpdate, current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationFailed("Name cannot be empty")
    user = update_by_id(db, "user", current_user.user["_id"], changes)
    log_activity(db, f"User {user['email']} updated their profile.", actor=current_user.id)
    return envelope(public_user(db, user), message="Profile updated successfully")


@app.delete("/api/profile", tags=["Profile"])
def delete_profile(response: Response, current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    update_by_id(db, "user", current_user.user["_id"], {"isActive": False})
    clear_session_cookie(response)
    log_activity(db, f"User {current_user.claims.email} deactivated their account.", actor=current_user.id)
    return envelope(message="Account deleted successfully")


# --- 3. Admin: User Management ---

@app.get("/api/admin/users", tags=["Admin Panel"])
def admin_list_users(
    page: int = 1,
    limit: int = 10,
    role: Optional[str] = None,
    status: Optional[str] = None,
    blocked: Optional[str] = None,
    search: Optional[str] = None,
    current_user: CurrentUser = Depends(admin_required),
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit)
    query: Dict[str, Any] = {}
    if role:
        query["role"] = role
    if status == "active":
        query["isActive"] = True
    elif status == "inactive":
        query["isActive"] = False
    if blocked in ("true", "false"):
        query["isBlocked"] = blocked == "true"
    if search and search.strip():
        query["$or"] = [{"name": regex(search)}, {"email": regex(search)}]

    users, meta = paginate(db, "user", query, page, limit, sort=[("createdAt", DESCENDING), ("_id", DESCENDING)])
    return envelope([public_user(db, u) for u in users], pagination=meta)


@app.get("/api/admin/users/{user_id}", tags=["Admin Panel"])
def admin_get_user(user_id: str, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    user = require_doc(db, "user", user_id, "User")
    return envelope(public_user(db, user))


def _create_user(db: Database, payload: schemas.AdminUserCreate, current_user: CurrentUser, role: Optional[str] = None) -> dict:
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise Conflict("User already exists")
    user = schemas.User(
        name=payload.name,
        email=email,
        password=hash_password(payload.password),
        role=role or payload.role,
        phone=payload.phone,
        address=payload.address,
        bio=payload.bio,
        # created by an administrator, no verification round-trip
        isEmailVerified=True,
    )
    user_id = create_document(db, "user", user)
    log_activity(db, f"Admin {actor_name(current_user)} created {user.role} {payload.name} ({email})", actor=current_user.id)
    return get_by_id(db, "user", user_id)


@app.post("/api/admin/users", status_code=201, tags=["Admin Panel"])
def admin_create_user(payload: schemas.AdminUserCreate, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    user = _create_user(db, payload, current_user)
    return envelope(public_user(db, user), message="User created successfully")


@app.post("/api/admin/create-admin", status_code=201, tags=["Admin Panel"])
def admin_create_admin(payload: schemas.AdminUserCreate, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    user = _create_user(db, payload, current_user, role="admin")
    return envelope(public_user(db, user), message="Admin created successfully")


@app.put("/api/admin/users/{user_id}", tags=["Admin Panel"])
def admin_update_user(user_id: str, payload: schemas.AdminUserUpdate, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    target = require_doc(db, "user", user_id, "User")
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and not changes["name"].strip():
        raise ValidationFailed("Name cannot be empty")

    is_self = str(target["_id"]) == current_user.id
    if target.get("role") == "admin" and not is_self and changes.get("role") not in (None, "admin"):
        raise Forbidden("Cannot change another admin's role")
    if changes.get("email"):
        changes["email"] = changes["email"].lower()
        if db["user"].find_one({"email": changes["email"], "_id": {"$ne": target["_id"]}}):
            raise Conflict("Email already in use")
    if changes.get("password"):
        changes["password"] = hash_password(changes["password"])
    else:
        changes.pop("password", None)

    user = update_by_id(db, "user", target["_id"], changes)
    log_activity(db, f"Admin {actor_name(current_user)} updated user {user.get('name')} ({user['email']})", actor=current_user.id)
    return envelope(public_user(db, user), message="User updated successfully")


@app.delete("/api/admin/users/{user_id}", tags=["Admin Panel"])
def admin_delete_user(user_id: str, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    target = require_doc(db, "user", user_id, "User")
    if str(target["_id"]) == current_user.id:
        raise ValidationFailed("Cannot delete your own account")

    db["user"].delete_one({"_id": target["_id"]})
    # orphan policy: clear blocker pointers, drop the testimonial, keep content
    db["user"].update_many({"blockedBy": target["_id"]}, {"$set": {"blockedBy": None}})
    db["comment"].delete_many({"user": target["_id"]})
    log_activity(db, f"Admin {actor_name(current_user)} deleted user {target.get('name')} ({target['email']})", actor=current_user.id)
    return envelope(message="User deleted successfully")


@app.put("/api/admin/users/{user_id}/block", tags=["Admin Panel"])
def admin_block_user(user_id: str, payload: schemas.BlockRequest, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    target = require_doc(db, "user", user_id, "User")
    if str(target["_id"]) == current_user.id:
        raise ValidationFailed("Cannot block your own account")
    if payload.isBlocked and target.get("role") == "admin":
        raise Forbidden("Cannot block an admin")

    if payload.isBlocked:
        user = update_by_id(db, "user", target["_id"], {
            "isBlocked": True,
            "blockedBy": current_user.user["_id"],
            "blockedAt": now(),
            "blockReason": (payload.blockReason or "").strip() or None,
        })
    else:
        user = update_by_id(db, "user", target["_id"], {"isBlocked": False},
                            unset=("blockedBy", "blockedAt", "blockReason"))
    verb = "blocked" if payload.isBlocked else "unblocked"
    log_activity(db, f"Admin {actor_name(current_user)} {verb} user {target['email']}", actor=current_user.id)
    return envelope(public_user(db, user), message=f"User {verb} successfully")


@app.get("/api/admin/stats", tags=["Admin Panel"])
def admin_stats(current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    users = db["user"]
    month_start = now().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    stats = {
        "totalUsers": users.count_documents({}),
        "totalVets": users.count_documents({"role": "vet"}),
        "totalAdmins": users.count_documents({"role": "admin"}),
        "totalActive": users.count_documents({"isActive": True}),
        "totalBlocked": users.count_documents({"isBlocked": True}),
        "newThisMonth": users.count_documents({"createdAt": {"$gte": month_start}}),
        "totalPosts": db["petpost"].count_documents({}),
        "activePosts": db["petpost"].count_documents({"status": "active"}),
        "resolvedPosts": db["petpost"].count_documents({"status": "resolved"}),
        "activeAlerts": db["alert"].count_documents({"status": "active", "isActive": True}),
        "pendingReports": db["report"].count_documents({"status": "pending"}),
        "pendingComments": db["comment"].count_documents({"isApproved": False}),
        "recentActivity": recent_activity(db, 10),
    }
    return envelope(stats)


# --- 4. Pet Posts ---

def _post_filters(
    postType: Optional[str] = None,
    status: Optional[str] = None,
    petType: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    isEmergency: Optional[bool] = None,
    search: Optional[str] = None,
    dateRange: Optional[str] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if postType:
        query["postType"] = postType
    if status:
        query["status"] = status
    if petType:
        query["petType"] = regex(petType)
    if city:
        query["city"] = regex(city)
    if state:
        query["state"] = regex(state)
    if isEmergency is not None:
        query["isEmergency"] = isEmergency
    if search and search.strip():
        query["$or"] = [{field: regex(search)} for field in ("title", "description", "petName", "petBreed")]
    if dateRange:
        since = {
            "today": now().replace(hour=0, minute=0, second=0, microsecond=0),
            "week": now() - timedelta(days=7),
            "month": now() - timedelta(days=30),
        }.get(dateRange)
        if since is None:
            raise ValidationFailed("dateRange must be one of today, week, month")
        query["createdAt"] = {"$gte": since}
    return query


@app.get("/api/posts", tags=["Pet Posts"])
def list_posts(
    page: int = 1,
    limit: int = 10,
    filters: Dict[str, Any] = Depends(_post_filters),
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit)
    posts, meta = paginate(db, "petpost", filters, page, limit)
    return envelope([public_post(db, p) for p in posts], pagination=meta)


@app.post("/api/posts", status_code=201, tags=["Pet Posts"])
def create_post(payload: Dict[str, Any] = Body(...), current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    post = parse_payload(schemas.PetPost, validate_submission(PET_POST_WIZARD, payload))
    doc = post.model_dump(exclude_none=True)
    doc["city"] = post.city or post.location.city
    doc["state"] = post.state or post.location.state
    doc.update({"userId": current_user.user["_id"], "status": "active", "views": 0, "comments": []})
    post_id = create_document(db, "petpost", {k: v for k, v in doc.items() if v is not None})
    log_activity(db, f"User {current_user.claims.email} created {post.postType} post '{post.title}'", actor=current_user.id)
    return envelope(public_post(db, get_by_id(db, "petpost", post_id)), message="Post created successfully")


@app.get("/api/posts/nearby", tags=["Pet Posts"])
def nearby_posts(
    longitude: float,
    latitude: float,
    distance: float = 10,
    postType: Optional[str] = None,
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {"status": "active"}
    if postType:
        query["postType"] = {"$in": [t.strip() for t in postType.split(",") if t.strip()]}
    scored = []
    for post in db["petpost"].find(query):
        km = distance_to(post, longitude, latitude)
        if km <= distance:
            scored.append((km, post))
    scored.sort(key=lambda pair: pair[0])
    data = []
    for km, post in scored:
        item = public_post(db, post)
        item["distance"] = round(km, 2)
        data.append(item)
    return envelope(data, count=len(data))


@app.get("/api/user/posts", tags=["Pet Posts"])
def my_posts(page: int = 1, limit: int = 10, current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    page, limit = page_params(page, limit)
    posts, meta = paginate(db, "petpost", {"userId": current_user.user["_id"]}, page, limit)
    return envelope([public_post(db, p) for p in posts], pagination=meta)


@app.get("/api/posts/{post_id}", tags=["Pet Posts"])
def get_post(post_id: str, db: Database = Depends(get_db)):
    oid = to_object_id(post_id)
    post = None
    if oid is not None:
        # every read counts as a view
        post = db["petpost"].find_one_and_update({"_id": oid}, {"$inc": {"views": 1}}, return_document=ReturnDocument.AFTER)
    if not post:
        raise NotFound("Post not found")
    return envelope(public_post(db, post))


@app.put("/api/posts/{post_id}", tags=["Pet Posts"])
def update_post(post_id: str, payload: schemas.PetPostUpdate, current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    post = require_doc(db, "petpost", post_id, "Post")
    ensure_owner_or_role(current_user, post.get("userId"), message="Not authorized to update this post")
    changes = payload.model_dump(exclude_unset=True)
    if post.get("postType") == "missing" and "lastSeenDate" in changes and changes["lastSeenDate"] is None:
        raise ValidationFailed("lastSeenDate is required for missing pet posts")
    if payload.location is not None:
        changes["location"] = payload.location.model_dump(exclude_none=True)
    updated = update_by_id(db, "petpost", post["_id"], changes)
    log_activity(db, f"User {current_user.claims.email} updated post '{updated.get('title')}'", actor=current_user.id)
    return envelope(public_post(db, updated), message="Post updated successfully")


@app.patch("/api/posts/{post_id}", tags=["Pet Posts"])
def post_action(post_id: str, payload: schemas.PostAction, current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    post = require_doc(db, "petpost", post_id, "Post")
    status = post.get("status", "active")

    if payload.action == "comment":
        text = (payload.text or "").strip()
        if not text:
            raise ValidationFailed("Comment text is required")
        if status != "active":
            raise ValidationFailed("Comments can only be added to active posts")
        comment = {"_id": ObjectId(), "userId": current_user.user["_id"], "text": text, "createdAt": now()}
        db["petpost"].update_one({"_id": post["_id"]}, {"$push": {"comments": comment}, "$set": {"updatedAt": now()}})
        log_activity(db, f"User {current_user.claims.email} commented on post '{post.get('title')}'", actor=current_user.id)
        return envelope(public_post(db, get_by_id(db, "petpost", post["_id"])), message="Comment added successfully")

    if payload.action == "resolve":
        ensure_owner_or_role(current_user, post.get("userId"), "vet", "admin", message="Not authorized to resolve this post")
        if status == "resolved":
            return envelope(public_post(db, post), message="Post is already resolved")
        if status == "closed":
            raise ValidationFailed("Closed posts cannot be resolved")
        updated = update_by_id(db, "petpost", post["_id"], {
            "status": "resolved",
            "resolvedAt": now(),
            "resolvedBy": current_user.user["_id"],
        })
        log_activity(db, f"{actor_name(current_user)} resolved post '{post.get('title')}'", actor=current_user.id)
        return envelope(public_post(db, updated), message="Post marked as resolved")

    if payload.action == "close":
        if not current_user.is_admin:
            raise Forbidden("Admin access required")
        if status == "closed":
            return envelope(public_post(db, post), message="Post is already closed")
        if status != "active":
            raise ValidationFailed("Only active posts can be closed")
        updated = update_by_id(db, "petpost", post["_id"], {"status": "closed"})
        log_activity(db, f"Admin {actor_name(current_user)} closed post '{post.get('title')}'", actor=current_user.id)
        return envelope(public_post(db, updated), message="Post closed")

    raise ValidationFailed("Invalid action")


@app.delete("/api/posts/{post_id}", tags=["Pet Posts"])
def delete_post(post_id: str, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    post = require_doc(db, "petpost", post_id, "Post")
    db["petpost"].delete_one({"_id": post["_id"]})
    log_activity(db, f"Admin {actor_name(current_user)} deleted post '{post.get('title')}'", actor=current_user.id)
    return envelope(message="Post deleted successfully")


@app.get("/api/posts/{post_id}/matches", tags=["Pet Posts"])
def post_matches(post_id: str, db: Database = Depends(get_db)):
    """Suggested matches: active posts for the same kind of pet with a similar breed or colour."""
    post = require_doc(db, "petpost", post_id, "Post")
    pb = (post.get("petBreed") or "").lower()
    pc = (post.get("petColor") or "").lower()
    query = {"_id": {"$ne": post["_id"]}, "status": "active"}
    if post.get("petType"):
        query["petType"] = {"$regex": f"^{re.escape(post['petType'])}$", "$options": "i"}

    scored = []
    for candidate in db["petpost"].find(query):
        cb = (candidate.get("petBreed") or "").lower()
        cc = (candidate.get("petColor") or "").lower()
        # fuzzy scores for breed and colour, best of either or their average
        bscore = fuzzy_ratio(pb, cb)
        cscore = fuzzy_ratio(pc, cc)
        score = max(bscore, cscore, (bscore + cscore) // 2)
        if score >= 60:
            scored.append((score, candidate))
    scored = sorted(scored, key=lambda x: x[0], reverse=True)[:5]

    data = []
    for score, candidate in scored:
        item = public_post(db, candidate)
        item["score"] = score
        data.append(item)
    return envelope(data)


# --- 5. Admin: Post Moderation & Exports ---

@app.get("/api/admin/posts", tags=["Admin Panel"])
def admin_list_posts(
    page: int = 1,
    limit: int = 20,
    filters: Dict[str, Any] = Depends(_post_filters),
    current_user: CurrentUser = Depends(admin_required),
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit, default_limit=20)
    posts, meta = paginate(db, "petpost", filters, page, limit)
    return envelope([public_post(db, p) for p in posts], pagination=meta)


@app.get("/api/admin/posts/stats", tags=["Admin Panel"])
def admin_post_stats(current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    posts = db["petpost"]
    return envelope({
        "total": posts.count_documents({}),
        "byType": {t: posts.count_documents({"postType": t}) for t in ("missing", "emergency", "wounded")},
        "byStatus": {s: posts.count_documents({"status": s}) for s in ("active", "resolved", "closed")},
        "emergencies": posts.count_documents({"isEmergency": True, "status": "active"}),
    })


EXPORT_COLUMNS = ["id", "title", "postType", "petName", "petType", "petBreed", "petColor", "status", "city", "state", "views", "author", "createdAt"]


def _export_rows(db: Database) -> List[List[str]]:
    rows = []
    for post in db["petpost"].find({}).sort([("createdAt", DESCENDING)]):
        author = user_summary(db, post.get("userId"))
        created = post.get("createdAt")
        rows.append([
            str(post["_id"]),
            post.get("title", ""),
            post.get("postType", ""),
            post.get("petName", ""),
            post.get("petType", ""),
            post.get("petBreed", "") or "",
            post.get("petColor", "") or "",
            post.get("status", ""),
            post.get("city", "") or "",
            post.get("state", "") or "",
            str(post.get("views", 0)),
            author["email"] if author else "",
            created.isoformat() if isinstance(created, datetime) else "",
        ])
    return rows


@app.get("/api/admin/export/posts.csv", tags=["Admin Panel"])
def admin_export_posts_csv(current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    """Admin-only CSV export of pet posts."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_COLUMNS)
    writer.writerows(_export_rows(db))
    log_activity(db, f"Admin {actor_name(current_user)} exported posts as CSV", actor=current_user.id)
    headers = {"Content-Disposition": "attachment; filename=posts_export.csv"}
    return Response(content=output.getvalue().encode("utf-8"), media_type="text/csv", headers=headers)


@app.get("/api/admin/export/posts.pdf", tags=["Admin Panel"])
def admin_export_posts_pdf(current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    """Admin-only PDF export of pet posts."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(letter))
    styles = getSampleStyleSheet()
    flowables = [Paragraph("SafeTails - Pet Posts Export", styles["Title"]), Spacer(1, 12)]

    data = [["ID", "Title", "Type", "Pet", "Status", "City", "Views", "Created"]]
    for row in _export_rows(db):
        data.append([row[0][-8:], row[1][:40], row[2], row[3], row[7], row[8], row[10], row[12][:10]])

    table = Table(data, repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#b22222")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("ALIGN", (0, 0), (-1, -1), "LEFT"),
    ]))
    flowables.append(table)
    doc.build(flowables)
    pdf_bytes = buffer.getvalue()
    buffer.close()

    log_activity(db, f"Admin {actor_name(current_user)} exported posts as PDF", actor=current_user.id)
    headers = {"Content-Disposition": "attachment; filename=posts_export.pdf"}
    return Response(content=pdf_bytes, media_type="application/pdf", headers=headers)


# --- 6. Alerts ---

@app.post("/api/alerts", status_code=201, tags=["Alerts"])
def create_alert(payload: Dict[str, Any] = Body(...), current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    alert = parse_payload(schemas.Alert, validate_submission(ALERT_FORM, payload))
    doc = alert.model_dump(exclude_none=True)
    doc.update({
        "createdBy": current_user.user["_id"],
        "status": "active",
        "isActive": True,
        "notificationSent": False,
    })
    alert_id = create_document(db, "alert", doc)
    log_activity(db, f"User {current_user.claims.email} raised {alert.urgency} alert '{alert.title}'", actor=current_user.id)
    return envelope(public_listing(db, get_by_id(db, "alert", alert_id), "createdBy"), message="Alert created successfully")


@app.get("/api/alerts", tags=["Alerts"])
def list_alerts(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    type: Optional[str] = None,
    urgency: Optional[str] = None,
    status: str = "active",
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: float = 10,
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit)
    query: Dict[str, Any] = {"isActive": True, "status": status}
    if type:
        query["type"] = type
    if urgency:
        query["urgency"] = urgency
    if search and search.strip():
        query["$or"] = [{field: regex(search)} for field in ("title", "description", "location.address", "location.city")]

    alerts = list(db["alert"].find(query).sort([("createdAt", DESCENDING), ("_id", DESCENDING)]))
    if latitude is not None and longitude is not None:
        # searcher inside the alert's own coverage, and that coverage no wider than the search radius
        nearby = []
        for alert in alerts:
            alert_radius = (alert.get("location") or {}).get("radius") or 10
            if distance_to(alert, longitude, latitude) <= alert_radius and alert_radius <= radius:
                nearby.append(alert)
        alerts = nearby
    alerts.sort(key=lambda a: URGENCY_ORDER.get(a.get("urgency"), len(URGENCY_ORDER)))

    items, meta = paginate_list(alerts, page, limit)
    return envelope([public_listing(db, a, "createdBy") for a in items], pagination=meta)


@app.get("/api/alerts/count", tags=["Alerts"])
def count_alerts(db: Database = Depends(get_db)):
    alerts = db["alert"]
    by_type = alerts.aggregate([
        {"$group": {"_id": "$type", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ])
    return envelope({
        "total": alerts.count_documents({}),
        "byStatus": {
            "active": alerts.count_documents({"status": "active", "isActive": True}),
            "resolved": alerts.count_documents({"status": "resolved"}),
            "expired": alerts.count_documents({"status": "expired"}),
        },
        "byType": [{"type": row["_id"], "count": row["count"]} for row in by_type],
    })


def _alert_for_update(db: Database, alert_id: Optional[str], current_user: CurrentUser) -> dict:
    if not alert_id:
        raise ValidationFailed("Alert ID is required")
    alert = require_doc(db, "alert", alert_id, "Alert")
    ensure_owner_or_role(current_user, alert.get("createdBy"), "admin", message="Not authorized to modify this alert")
    return alert


@app.put("/api/alerts", tags=["Alerts"])
def update_alert(
    payload: schemas.AlertUpdate,
    id: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(login_required),
    db: Database = Depends(get_db),
):
    alert = _alert_for_update(db, id, current_user)
    changes = payload.model_dump(exclude_unset=True)
    if payload.location is not None:
        changes["location"] = payload.location.model_dump(exclude_none=True)
    if payload.petDetails is not None:
        changes["petDetails"] = payload.petDetails.model_dump(exclude_none=True)
    if changes.get("status") in ("resolved", "expired"):
        changes["isActive"] = False
    elif changes.get("status") == "active":
        changes["isActive"] = True
    updated = update_by_id(db, "alert", alert["_id"], changes)
    log_activity(db, f"{actor_name(current_user)} updated alert '{updated.get('title')}'", actor=current_user.id)
    return envelope(public_listing(db, updated, "createdBy"), message="Alert updated successfully")


@app.delete("/api/alerts", tags=["Alerts"])
def delete_alert(id: Optional[str] = Query(None), current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    alert = _alert_for_update(db, id, current_user)
    update_by_id(db, "alert", alert["_id"], {"status": "expired", "isActive": False})
    log_activity(db, f"{actor_name(current_user)} removed alert '{alert.get('title')}'", actor=current_user.id)
    return envelope(message="Alert deleted successfully")


@app.get("/api/admin/alerts", tags=["Admin Panel"])
def admin_list_alerts(page: int = 1, limit: int = 20, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    page, limit = page_params(page, limit, default_limit=20)
    alerts, meta = paginate(db, "alert", {}, page, limit)
    return envelope([public_listing(db, a, "createdBy") for a in alerts], pagination=meta)


@app.delete("/api/admin/alerts/{alert_id}", tags=["Admin Panel"])
def admin_delete_alert(alert_id: str, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    alert = require_doc(db, "alert", alert_id, "Alert")
    db["alert"].delete_one({"_id": alert["_id"]})
    log_activity(db, f"Admin {actor_name(current_user)} deleted alert '{alert.get('title')}'", actor=current_user.id)
    return envelope(message="Alert deleted successfully")


# --- 7. Vet Directory ---

@app.get("/api/vet-directory", tags=["Vet Directory"])
def list_vet_directory(
    specialization: Optional[List[str]] = Query(None),
    isEmergencyAvailable: Optional[bool] = None,
    is24Hours: Optional[bool] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    search: Optional[str] = None,
    longitude: Optional[float] = None,
    latitude: Optional[float] = None,
    distance: float = 50,
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {"isActive": True}
    if specialization:
        query["specialization"] = {"$in": specialization}
    if isEmergencyAvailable is not None:
        query["isEmergencyAvailable"] = isEmergencyAvailable
    if is24Hours is not None:
        query["is24Hours"] = is24Hours
    if city:
        query["location.city"] = regex(city)
    if state:
        query["location.state"] = regex(state)
    if search and search.strip():
        query["$or"] = [{field: regex(search)} for field in ("clinicName", "services", "location.address", "location.city")]

    entries = list(db["vetdirectory"].find(query).sort([("rating", DESCENDING), ("isEmergencyAvailable", DESCENDING)]))
    if longitude is not None and latitude is not None:
        scored = [(distance_to(e, longitude, latitude), e) for e in entries]
        scored = sorted([pair for pair in scored if pair[0] <= distance], key=lambda pair: pair[0])
        data = []
        for km, entry in scored:
            item = public_listing(db, entry, "vetId")
            item["distance"] = round(km, 2)
            data.append(item)
    else:
        data = [public_listing(db, e, "vetId") for e in entries]
    return envelope(data, count=len(data))


@app.get("/api/vet-directory/emergency", tags=["Vet Directory"])
def emergency_vets(db: Database = Depends(get_db)):
    entries = db["vetdirectory"].find({"isActive": True, "isEmergencyAvailable": True}).sort([("is24Hours", DESCENDING), ("rating", DESCENDING)])
    data = [public_listing(db, e, "vetId") for e in entries]
    return envelope(data, count=len(data))


@app.post("/api/vet-directory", status_code=201, tags=["Vet Directory"])
def create_vet_entry(payload: schemas.VetDirectory, current_user: CurrentUser = Depends(vet_required), db: Database = Depends(get_db)):
    doc = payload.model_dump(exclude_none=True)
    doc.update({
        "vetId": current_user.user["_id"],
        "rating": 0,
        "totalReviews": 0,
        "isVerified": False,
        "isActive": True,
    })
    entry_id = create_document(db, "vetdirectory", doc)
    log_activity(db, f"Vet {actor_name(current_user)} listed clinic '{payload.clinicName}'", actor=current_user.id)
    return envelope(public_listing(db, get_by_id(db, "vetdirectory", entry_id), "vetId"), message="Vet directory entry created successfully")


@app.put("/api/admin/vet-directory/{entry_id}", tags=["Admin Panel"])
def admin_verify_vet_entry(entry_id: str, payload: schemas.VetVerification, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    entry = require_doc(db, "vetdirectory", entry_id, "Vet directory entry")
    updated = update_by_id(db, "vetdirectory", entry["_id"], {"isVerified": payload.isVerified})
    verb = "verified" if payload.isVerified else "unverified"
    log_activity(db, f"Admin {actor_name(current_user)} {verb} clinic '{entry.get('clinicName')}'", actor=current_user.id)
    return envelope(public_listing(db, updated, "vetId"), message=f"Vet directory entry {verb}")


@app.delete("/api/admin/vet-directory/{entry_id}", tags=["Admin Panel"])
def admin_delete_vet_entry(entry_id: str, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    entry = require_doc(db, "vetdirectory", entry_id, "Vet directory entry")
    db["vetdirectory"].delete_one({"_id": entry["_id"]})
    log_activity(db, f"Admin {actor_name(current_user)} deleted clinic '{entry.get('clinicName')}'", actor=current_user.id)
    return envelope(message="Vet directory entry deleted successfully")


# --- 8. Adoption & Foster Listings ---

def _listing_query(status, listing_type, type_field, petType, city, state, search) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    if listing_type:
        query[type_field] = listing_type
    if petType:
        query["petType"] = regex(petType)
    if city:
        query["location.city"] = regex(city)
    if state:
        query["location.state"] = regex(state)
    if search and search.strip():
        query["$or"] = [{field: regex(search)} for field in ("petName", "petBreed", "description")]
    return query


@app.get("/api/adoption", tags=["Adoption"])
def list_adoptions(
    page: int = 1,
    limit: int = 12,
    status: Optional[str] = None,
    adoption_type: Optional[str] = Query(None, alias="type"),
    petType: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    search: Optional[str] = None,
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit, default_limit=12)
    query = _listing_query(status, adoption_type, "adoptionType", petType, city, state, search)
    listings, meta = paginate(db, "adoption", query, page, limit)
    return envelope([public_listing(db, a) for a in listings], pagination=meta)


@app.post("/api/adoption", status_code=201, tags=["Adoption"])
def create_adoption(payload: Dict[str, Any] = Body(...), current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    listing = parse_payload(schemas.Adoption, validate_submission(ADOPTION_WIZARD, payload))
    doc = listing.model_dump(exclude_none=True)
    doc.update({"userId": current_user.user["_id"], "status": "available", "applications": []})
    listing_id = create_document(db, "adoption", doc)
    log_activity(db, f"User {current_user.claims.email} listed a {listing.petType} for adoption", actor=current_user.id)
    return envelope(public_listing(db, get_by_id(db, "adoption", listing_id)), message="Adoption listing created successfully")


@app.get("/api/adoption/{listing_id}", tags=["Adoption"])
def get_adoption(listing_id: str, db: Database = Depends(get_db)):
    return envelope(public_listing(db, require_doc(db, "adoption", listing_id, "Adoption listing")))


@app.delete("/api/admin/adoption/{listing_id}", tags=["Admin Panel"])
def admin_delete_adoption(listing_id: str, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    listing = require_doc(db, "adoption", listing_id, "Adoption listing")
    db["adoption"].delete_one({"_id": listing["_id"]})
    log_activity(db, f"Admin {actor_name(current_user)} deleted adoption listing {listing_id}", actor=current_user.id)
    return envelope(message="Adoption listing deleted successfully")


@app.get("/api/foster", tags=["Foster"])
def list_fosters(
    page: int = 1,
    limit: int = 12,
    status: Optional[str] = None,
    foster_type: Optional[str] = Query(None, alias="type"),
    petType: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    search: Optional[str] = None,
    isUrgent: Optional[bool] = None,
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit, default_limit=12)
    query = _listing_query(status, foster_type, "fosterType", petType, city, state, search)
    if isUrgent is not None:
        query["isUrgent"] = isUrgent
    listings, meta = paginate(db, "foster", query, page, limit)
    return envelope([public_listing(db, f) for f in listings], pagination=meta)


@app.post("/api/foster", status_code=201, tags=["Foster"])
def create_foster(payload: Dict[str, Any] = Body(...), current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    listing = parse_payload(schemas.Foster, validate_submission(FOSTER_WIZARD, payload))
    doc = listing.model_dump(exclude_none=True)
    doc.update({"userId": current_user.user["_id"], "status": "pending", "applications": []})
    listing_id = create_document(db, "foster", doc)
    log_activity(db, f"User {current_user.claims.email} requested foster care for {listing.petName}", actor=current_user.id)
    return envelope(public_listing(db, get_by_id(db, "foster", listing_id)), message="Foster request created successfully")


@app.get("/api/foster/{listing_id}", tags=["Foster"])
def get_foster(listing_id: str, db: Database = Depends(get_db)):
    return envelope(public_listing(db, require_doc(db, "foster", listing_id, "Foster request")))


@app.delete("/api/admin/foster/{listing_id}", tags=["Admin Panel"])
def admin_delete_foster(listing_id: str, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    listing = require_doc(db, "foster", listing_id, "Foster request")
    db["foster"].delete_one({"_id": listing["_id"]})
    log_activity(db, f"Admin {actor_name(current_user)} deleted foster request for {listing.get('petName')}", actor=current_user.id)
    return envelope(message="Foster request deleted successfully")


# --- 9. Reports ---

def _public_report(db: Database, report: dict) -> dict:
    data = to_public(report)
    post = get_by_id(db, "petpost", report.get("postId"))
    data["post"] = {"id": str(post["_id"]), "title": post.get("title"), "status": post.get("status")} if post else None
    data["reporter"] = user_summary(db, report.get("reportedBy"))
    return data


@app.post("/api/reports", status_code=201, tags=["Reports"])
def create_report(payload: schemas.Report, current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    post = require_doc(db, "petpost", payload.postId, "Post")
    existing = db["report"].find_one({
        "postId": post["_id"],
        "reportedBy": current_user.user["_id"],
        "status": {"$in": ["pending", "reviewed"]},
    })
    if existing:
        raise Conflict("You have already reported this post", status_code=400)

    report_id = create_document(db, "report", {
        "postId": post["_id"],
        "reportedBy": current_user.user["_id"],
        "reason": payload.reason,
        "description": payload.description.strip(),
        "status": "pending",
    })
    log_activity(db, f"User {current_user.claims.email} reported post '{post.get('title')}' ({payload.reason})", actor=current_user.id)
    return envelope(_public_report(db, get_by_id(db, "report", report_id)), message="Report submitted successfully")


@app.get("/api/reports", tags=["Reports"])
def list_reports(
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    current_user: CurrentUser = Depends(admin_required),
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit, default_limit=20)
    query = {"status": status} if status else {}
    reports, meta = paginate(db, "report", query, page, limit)
    return envelope([_public_report(db, r) for r in reports], pagination=meta)


@app.put("/api/reports", tags=["Reports"])
def review_report(
    payload: schemas.ReportReview,
    id: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(admin_required),
    db: Database = Depends(get_db),
):
    if not id:
        raise ValidationFailed("Report ID is required")
    report = require_doc(db, "report", id, "Report")
    changes: Dict[str, Any] = {"status": payload.status}
    if payload.adminNotes is not None:
        changes["adminNotes"] = payload.adminNotes
    if payload.status == "pending":
        updated = update_by_id(db, "report", report["_id"], changes, unset=("reviewedBy", "reviewedAt"))
    else:
        changes.update({"reviewedBy": current_user.user["_id"], "reviewedAt": now()})
        updated = update_by_id(db, "report", report["_id"], changes)
    log_activity(db, f"Admin {actor_name(current_user)} marked report {id} as {payload.status}", actor=current_user.id)
    return envelope(_public_report(db, updated), message="Report updated successfully")


@app.delete("/api/admin/reports/{report_id}", tags=["Admin Panel"])
def admin_delete_report(report_id: str, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    report = require_doc(db, "report", report_id, "Report")
    db["report"].delete_one({"_id": report["_id"]})
    log_activity(db, f"Admin {actor_name(current_user)} deleted report {report_id}", actor=current_user.id)
    return envelope(message="Report deleted successfully")


# --- 10. Testimonials ---

def _public_comment(db: Database, comment: dict, with_email: bool = False) -> dict:
    data = to_public(comment)
    author = get_by_id(db, "user", comment.get("user"))
    if author:
        data["user"] = {"id": str(author["_id"]), "name": author.get("name"), "profileImage": author.get("profileImage")}
        if with_email:
            data["user"]["email"] = author.get("email")
    else:
        data["user"] = None
    return data


@app.get("/api/comments", tags=["Testimonials"])
def list_approved_comments(db: Database = Depends(get_db)):
    comments = db["comment"].find({"isApproved": True}).sort([("createdAt", DESCENDING), ("_id", DESCENDING)]).limit(6)
    return envelope([_public_comment(db, c) for c in comments])


@app.get("/api/comments/user", tags=["Testimonials"])
def get_my_comment(current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    comment = db["comment"].find_one({"user": current_user.user["_id"]})
    return {"success": True, "data": _public_comment(db, comment) if comment else None}


@app.post("/api/comments/user", status_code=201, tags=["Testimonials"])
def create_my_comment(payload: schemas.Comment, current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    # read-then-insert; no unique index backs this
    if db["comment"].find_one({"user": current_user.user["_id"]}):
        raise Conflict("You have already submitted a review", status_code=400)
    comment_id = create_document(db, "comment", {
        "user": current_user.user["_id"],
        "userType": "vet" if current_user.role == "vet" else "user",
        "content": payload.content.strip(),
        "rating": payload.rating,
        "isApproved": False,
    })
    log_activity(db, f"User {current_user.claims.email} submitted a review ({payload.rating}/5)", actor=current_user.id)
    return envelope(_public_comment(db, get_by_id(db, "comment", comment_id)), message="Thank you! Your review has been submitted for approval.")


@app.put("/api/comments/user", tags=["Testimonials"])
def update_my_comment(payload: schemas.Comment, current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    comment = db["comment"].find_one({"user": current_user.user["_id"]})
    if not comment:
        raise NotFound("Review not found")
    # edits go back through moderation
    updated = update_by_id(db, "comment", comment["_id"], {
        "content": payload.content.strip(),
        "rating": payload.rating,
        "isApproved": False,
    })
    log_activity(db, f"User {current_user.claims.email} edited their review", actor=current_user.id)
    return envelope(_public_comment(db, updated), message="Review updated and awaiting approval")


@app.delete("/api/comments/user", tags=["Testimonials"])
def delete_my_comment(current_user: CurrentUser = Depends(login_required), db: Database = Depends(get_db)):
    result = db["comment"].delete_one({"user": current_user.user["_id"]})
    if not result.deleted_count:
        raise NotFound("Review not found")
    log_activity(db, f"User {current_user.claims.email} deleted their review", actor=current_user.id)
    return envelope(message="Review deleted successfully")


@app.get("/api/admin/comments", tags=["Admin Panel"])
def admin_list_comments(
    page: int = 1,
    limit: int = 20,
    isApproved: Optional[bool] = None,
    current_user: CurrentUser = Depends(admin_required),
    db: Database = Depends(get_db),
):
    page, limit = page_params(page, limit, default_limit=20)
    query = {"isApproved": isApproved} if isApproved is not None else {}
    comments, meta = paginate(db, "comment", query, page, limit)
    return envelope([_public_comment(db, c, with_email=True) for c in comments], pagination=meta)


@app.put("/api/admin/comments/{comment_id}", tags=["Admin Panel"])
def admin_moderate_comment(comment_id: str, payload: schemas.CommentApproval, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    comment = require_doc(db, "comment", comment_id, "Comment")
    updated = update_by_id(db, "comment", comment["_id"], {"isApproved": payload.isApproved})
    verb = "approved" if payload.isApproved else "rejected"
    log_activity(db, f"Admin {actor_name(current_user)} {verb} review {comment_id}", actor=current_user.id)
    return envelope(_public_comment(db, updated, with_email=True), message=f"Comment {verb}")


@app.delete("/api/admin/comments/{comment_id}", tags=["Admin Panel"])
def admin_delete_comment(comment_id: str, current_user: CurrentUser = Depends(admin_required), db: Database = Depends(get_db)):
    comment = require_doc(db, "comment", comment_id, "Comment")
    db["comment"].delete_one({"_id": comment["_id"]})
    log_activity(db, f"Admin {actor_name(current_user)} deleted review {comment_id}", actor=current_user.id)
    return envelope(message="Comment deleted successfully")


# --- 11. Image Upload ---

def save_image(content: bytes, extension: str) -> str:
    """Saves image bytes into UPLOAD_DIR and returns the public URL."""
    unique_filename = f"{uuid4()}.{extension}"
    file_path = os.path.join(UPLOAD_DIR, unique_filename)
    with open(file_path, "wb") as buffer:
        buffer.write(content)
    return f"/static/uploads/{unique_filename}"


def _decode_data_url(image: str):
    if not image.startswith("data:image/") or "," not in image:
        raise ValidationFailed("Invalid image format")
    header, encoded = image.split(",", 1)
    extension = header[len("data:image/"):].split(";")[0].lower()
    if extension not in IMAGE_EXTENSIONS:
        raise ValidationFailed("Unsupported image type")
    # size check before decoding
    if math.ceil(len(encoded) * 3 / 4) > MAX_IMAGE_BYTES:
        raise ValidationFailed("Image size too large. Maximum size is 5MB.")
    try:
        return base64.b64decode(encoded, validate=True), extension
    except (binascii.Error, ValueError):
        raise ValidationFailed("Invalid image format")


@app.post("/api/upload-image", tags=["Uploads"])
async def upload_image(request: Request, current_user: CurrentUser = Depends(login_required)):
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file") or form.get("image")
        if isinstance(upload, UploadFile):
            media_type = (upload.content_type or "").lower()
            extension = media_type[len("image/"):] if media_type.startswith("image/") else ""
            if extension not in IMAGE_EXTENSIONS:
                raise ValidationFailed("Invalid image format")
            content = await upload.read()
            if len(content) > MAX_IMAGE_BYTES:
                raise ValidationFailed("Image size too large. Maximum size is 5MB.")
        elif upload:
            content, extension = _decode_data_url(str(upload))
        else:
            raise ValidationFailed("No image provided")
    else:
        try:
            body = await request.json()
        except ValueError:
            raise ValidationFailed("No image provided")
        payload = parse_payload(schemas.ImageUpload, body if isinstance(body, dict) else {})
        content, extension = _decode_data_url(payload.image)

    if extension == "jpeg":
        extension = "jpg"
    image_url = save_image(content, extension)
    return {"success": True, "imageUrl": image_url, "message": "Image uploaded successfully"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
