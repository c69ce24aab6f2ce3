import os
import time
import shutil
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
from database import create_document, ensure_indexes, get_db, get_documents
from schemas import (
    Appointment,
    AppointmentOut,
    AppointmentPayload,
    DeleteResponse,
    LoginPayload,
    LoginResponse,
    MessageResponse,
    NewsItem,
    NewsItemOut,
    NewsPayload,
    ProfileResponse,
    ProfileUpdate,
    ProfileUpdateResponse,
    RegisterPayload,
    SavedPage,
    SavedPageOut,
    SavePagePayload,
    User,
)
from security import auth_current_user, create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")

os.makedirs(UPLOAD_DIR, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            ensure_indexes(database.db)
            logger.info("MongoDB connected: %s", database.database_name)
        except PyMongoError as e:
            logger.error("Could not prepare MongoDB indexes: %s", type(e).__name__, exc_info=e)
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set; database routes will fail")
    yield


app = FastAPI(title="Health Record Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Server Error"})


router = APIRouter()

# Sub-list field -> timestamp used to order it
SUB_LISTS = {
    "savedData": "savedAt",
    "newsHistory": "addedAt",
    "appointmentHistory": "addedAt",
}


# Helpers

def _object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _load_user(db: Database, user_id: str, projection: Optional[dict] = None) -> dict:
    oid = _object_id(user_id)
    user = db["user"].find_one({"_id": oid}, projection) if oid else None
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _timestamp(entry: dict, field: str) -> float:
    value = entry.get(field)
    return value.timestamp() if isinstance(value, datetime) else 0.0


def _list_entries(db: Database, user_id: str, field: str) -> List[dict]:
    """Return a sub-list newest first.

    Entries are ordered by their timestamp, descending; entries with equal
    timestamps come out last-appended first.
    """
    ts_field = SUB_LISTS[field]
    user = _load_user(db, user_id, {field: 1})
    entries = list(reversed(user.get(field) or []))
    entries.sort(key=lambda e: _timestamp(e, ts_field), reverse=True)
    return [{**e, "id": str(e.get("_id", ""))} for e in entries]


def _push_entry(db: Database, user_id: str, field: str, entry: dict, guard: Optional[dict] = None) -> bool:
    """Append an entry atomically. Returns False when ``guard`` rejected it."""
    oid = _object_id(user_id)
    query = {"_id": oid, **(guard or {})}
    result = db["user"].update_one(query, {
        "$push": {field: entry},
        "$set": {"updated_at": datetime.now(timezone.utc)},
    }) if oid else None
    if result is not None and result.matched_count:
        return True
    # Distinguish a missing user from a rejected guard
    _load_user(db, user_id, {"_id": 1})
    return False


def _pull_entry(db: Database, user_id: str, field: str, entry_id: str) -> bool:
    oid, entry_oid = _object_id(user_id), _object_id(entry_id)
    if oid is None or entry_oid is None:
        return False
    result = db["user"].update_one({"_id": oid}, {"$pull": {field: {"_id": entry_oid}}})
    return result.modified_count > 0


def _store_profile_image(upload: UploadFile) -> str:
    ext = os.path.splitext(upload.filename or "")[1]
    filename = f"profile-{int(time.time() * 1000)}{ext}"
    with open(os.path.join(UPLOAD_DIR, filename), "wb") as out:
        shutil.copyfileobj(upload.file, out)
    logger.info("Stored profile image %s", filename)
    return f"/uploads/{filename}"


@app.get("/")
def read_root():
    return {"message": "Hello from the Health Record Backend!"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is not None:
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        try:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️  Connected but Error: {type(e).__name__}"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


# Auth routes

@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterPayload, db: Database = Depends(get_db)):
    if db["user"].find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="Email already in use.")
    user = User(fullName=payload.fullName, email=payload.email, password_hash=hash_password(payload.password))
    try:
        create_document("user", user, database=db)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already in use.")
    logger.info("New user registered: %s", payload.email)
    return {"message": "Account created! Please log in."}


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginPayload, db: Database = Depends(get_db)):
    users = get_documents("user", {"email": payload.email}, limit=1, database=db)
    user = users[0] if users else None
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid email or password.")
    token = create_access_token({"id": str(user["_id"])})
    logger.info("User logged in: %s", user["_id"])
    return {
        "token": token,
        "token_type": "bearer",
        "user": {"id": str(user["_id"]), "name": user.get("fullName", ""), "email": user["email"]},
    }


# Profile routes

@router.get("/user-profile", response_model=ProfileResponse)
def user_profile(user_id: str = Depends(auth_current_user), db: Database = Depends(get_db)):
    user = _load_user(db, user_id, {"password_hash": 0})
    return ProfileResponse.from_document(user)


async def profile_form(request: Request) -> Tuple[ProfileUpdate, Optional[UploadFile]]:
    """Parse the multipart profile form.

    A field is present only if the client sent it; an empty string is a
    present value and clears the stored one.
    """
    form = await request.form()
    submitted = {k: form[k] for k in ProfileUpdate.model_fields if isinstance(form.get(k), str)}
    try:
        changes = ProfileUpdate.model_validate(submitted)
    except ValidationError as e:
        raise RequestValidationError([{**err, "loc": ("body", *err["loc"])} for err in e.errors()])
    image = form.get("profileImage")
    if image is None or isinstance(image, str) or not image.filename:
        image = None
    return changes, image


PROFILE_FORM_SCHEMA = {
    "type": "object",
    "properties": {
        **{name: {"type": "string"} for name in ProfileUpdate.model_fields},
        "profileImage": {"type": "string", "format": "binary"},
    },
}


@router.put(
    "/update-profile",
    response_model=ProfileUpdateResponse,
    openapi_extra={"requestBody": {"content": {"multipart/form-data": {"schema": PROFILE_FORM_SCHEMA}}}},
)
def update_profile(
    user_id: str = Depends(auth_current_user),
    form: Tuple[ProfileUpdate, Optional[UploadFile]] = Depends(profile_form),
    db: Database = Depends(get_db),
):
    changes, profile_image = form
    updates = changes.model_dump(exclude_unset=True)

    oid = _object_id(user_id)
    if oid is None:
        raise HTTPException(status_code=404, detail="User not found")
    if "email" in updates and db["user"].find_one({"email": updates["email"], "_id": {"$ne": oid}}):
        raise HTTPException(status_code=400, detail="Email already in use.")

    if profile_image is not None:
        updates["profileImg"] = _store_profile_image(profile_image)

    if updates:
        updates["updated_at"] = datetime.now(timezone.utc)
        try:
            user = db["user"].find_one_and_update(
                {"_id": oid},
                {"$set": updates},
                projection={"password_hash": 0},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise HTTPException(status_code=400, detail="Email already in use.")
    else:
        user = db["user"].find_one({"_id": oid}, {"password_hash": 0})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    logger.info("Profile updated for %s: %s", user_id, sorted(k for k in updates if k != "updated_at"))
    return {"message": "Profile updated successfully!", "user": ProfileResponse.from_document(user)}


# Saved pages

@router.post("/save-page", response_model=MessageResponse)
def save_page(payload: SavePagePayload, user_id: str = Depends(auth_current_user), db: Database = Depends(get_db)):
    entry = SavedPage(
        title=payload.title or "Untitled",
        informationType=payload.informationType or "General",
        content=payload.pageData,
    )
    url = payload.pageData.get("url")
    guard = {"savedData.content.url": {"$ne": url}} if url is not None else None
    if not _push_entry(db, user_id, "savedData", entry.to_document(), guard):
        raise HTTPException(status_code=400, detail="You have already saved this article.")
    return {"message": "Page saved successfully!"}


@router.get("/my-saved-pages", response_model=List[SavedPageOut])
def my_saved_pages(user_id: str = Depends(auth_current_user), db: Database = Depends(get_db)):
    return _list_entries(db, user_id, "savedData")


@router.delete("/my-saved-pages/{entry_id}", response_model=DeleteResponse)
def delete_saved_page(entry_id: str, user_id: str = Depends(auth_current_user), db: Database = Depends(get_db)):
    deleted = _pull_entry(db, user_id, "savedData", entry_id)
    return {"message": "Item deleted successfully", "deleted": deleted}


# News history

@router.post("/news", response_model=MessageResponse)
def add_news(payload: NewsPayload, user_id: str = Depends(auth_current_user), db: Database = Depends(get_db)):
    entry = NewsItem(**payload.model_dump())
    _push_entry(db, user_id, "newsHistory", entry.to_document())
    return {"message": "News saved successfully!"}


@router.get("/news", response_model=List[NewsItemOut])
def list_news(user_id: str = Depends(auth_current_user), db: Database = Depends(get_db)):
    return _list_entries(db, user_id, "newsHistory")


@router.delete("/news/{entry_id}", response_model=DeleteResponse)
def delete_news(entry_id: str, user_id: str = Depends(auth_current_user), db: Database = Depends(get_db)):
    deleted = _pull_entry(db, user_id, "newsHistory", entry_id)
    return {"message": "News deleted", "deleted": deleted}


# Appointment history

@router.post("/appointments", response_model=MessageResponse)
def add_appointment(payload: AppointmentPayload, user_id: str = Depends(auth_current_user), db: Database = Depends(get_db)):
    entry = Appointment(**payload.model_dump(exclude_none=True))
    _push_entry(db, user_id, "appointmentHistory", entry.to_document())
    return {"message": "Appointment added!"}


@router.get("/appointments", response_model=List[AppointmentOut])
def list_appointments(user_id: str = Depends(auth_current_user), db: Database = Depends(get_db)):
    return _list_entries(db, user_id, "appointmentHistory")


@router.delete("/appointments/{entry_id}", response_model=DeleteResponse)
def delete_appointment(entry_id: str, user_id: str = Depends(auth_current_user), db: Database = Depends(get_db)):
    deleted = _pull_entry(db, user_id, "appointmentHistory", entry_id)
    return {"message": "Appointment deleted", "deleted": deleted}


app.include_router(router, prefix="/api")
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
