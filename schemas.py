"""
Database Schemas

MongoDB collection schemas and API payloads as Pydantic models.
Model name is converted to lowercase for the collection name:
- User -> "user" collection

Sub-list entries (saved pages, news, appointments) are embedded in the
user document, each with its own generated ObjectId under "_id".
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    """Users collection schema (collection name: user)"""
    fullName: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="User email (unique)")
    password_hash: str = Field(..., description="BCrypt hashed password")
    phone: str = ""
    address: str = ""
    gender: str = ""
    dob: str = ""
    profileImg: str = Field("", description="Path of the uploaded profile image")
    bloodType: str = ""
    height: str = ""
    weight: str = ""
    allergies: str = ""
    conditions: str = ""
    savedData: List[dict] = Field(default_factory=list)
    newsHistory: List[dict] = Field(default_factory=list)
    appointmentHistory: List[dict] = Field(default_factory=list)


# Embedded sub-list entries

class SubEntry(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: ObjectId = Field(default_factory=ObjectId, alias="_id")

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class SavedPage(SubEntry):
    title: str = "Untitled"
    informationType: str = "General"
    content: Dict[str, Any] = Field(default_factory=dict)
    savedAt: datetime = Field(default_factory=_now)


class NewsItem(SubEntry):
    title: Optional[str] = None
    source: Optional[str] = None
    date: Optional[str] = None
    url: Optional[str] = None
    addedAt: datetime = Field(default_factory=_now)


class Appointment(SubEntry):
    doctor: Optional[str] = None
    type: Optional[str] = None
    date: Optional[str] = None
    status: str = "Upcoming"
    addedAt: datetime = Field(default_factory=_now)


# Request payloads

class RegisterPayload(BaseModel):
    fullName: str
    email: EmailStr
    password: str


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    """Partial profile update.

    Only fields explicitly set are written; use
    ``model_dump(exclude_unset=True)`` to get them.
    """
    fullName: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    gender: Optional[str] = None
    dob: Optional[str] = None
    bloodType: Optional[str] = None
    height: Optional[str] = None
    weight: Optional[str] = None
    allergies: Optional[str] = None
    conditions: Optional[str] = None


class SavePagePayload(BaseModel):
    title: Optional[str] = None
    informationType: Optional[str] = None
    pageData: Dict[str, Any]


class NewsPayload(BaseModel):
    title: Optional[str] = None
    source: Optional[str] = None
    date: Optional[str] = None
    url: Optional[str] = None


class AppointmentPayload(BaseModel):
    doctor: Optional[str] = None
    type: Optional[str] = None
    date: Optional[str] = None
    status: Optional[str] = None


# Responses

class MessageResponse(BaseModel):
    message: str


class DeleteResponse(BaseModel):
    message: str
    deleted: bool


class UserSummary(BaseModel):
    id: str
    name: str
    email: str


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserSummary


class ProfileResponse(BaseModel):
    id: str
    name: str = ""
    fullName: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    gender: str = ""
    dob: str = ""
    profileImg: str = ""
    bloodType: str = ""
    height: str = ""
    weight: str = ""
    allergies: str = ""
    conditions: str = ""

    @classmethod
    def from_document(cls, doc: dict) -> "ProfileResponse":
        fields = {k: doc.get(k) or "" for k in cls.model_fields if k not in ("id", "name")}
        return cls(id=str(doc["_id"]), name=doc.get("fullName") or "", **fields)


class ProfileUpdateResponse(BaseModel):
    message: str
    user: ProfileResponse


class SavedPageOut(BaseModel):
    id: str
    title: Optional[str] = None
    informationType: Optional[str] = None
    content: Dict[str, Any] = Field(default_factory=dict)
    savedAt: datetime


class NewsItemOut(BaseModel):
    id: str
    title: Optional[str] = None
    source: Optional[str] = None
    date: Optional[str] = None
    url: Optional[str] = None
    addedAt: datetime


class AppointmentOut(BaseModel):
    id: str
    doctor: Optional[str] = None
    type: Optional[str] = None
    date: Optional[str] = None
    status: str = "Upcoming"
    addedAt: datetime
