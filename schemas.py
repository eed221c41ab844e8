"""
Database Schemas for ContestHub

Each Pydantic model describes a MongoDB document. Fields are snake_case in
Python and camelCase on the wire and in storage (`model_dump(by_alias=True)`).
Request bodies live here as well so handlers stay thin.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

Role = Literal["user", "creator", "admin"]
ContestStatus = Literal["pending", "approved", "rejected"]

ROLES = ("user", "creator", "admin")
MODERATION_ACTIONS = ("approve", "reject", "delete")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Stored documents

class User(CamelModel):
    uid: str = Field(..., description="Identity provider subject id (unique)")
    email: EmailStr = Field(..., description="Email from the identity provider")
    display_name: str = Field("", description="Display name")
    photo_url: str = Field("", description="Avatar URL")
    role: Role = Field("user", description="user|creator|admin")
    address: Optional[str] = Field(None, description="Postal address")
    created_at: datetime = Field(default_factory=utcnow)


class Winner(CamelModel):
    uid: str = Field(..., description="Winner subject id")
    name: str = ""
    email: Optional[str] = None
    photo_url: str = ""
    prize: float = Field(0, ge=0, description="Prize amount awarded")
    declared_at: datetime = Field(default_factory=utcnow)


class Contest(CamelModel):
    name: str = Field(..., min_length=1)
    image: str = ""
    description: str = ""
    category: str = Field(..., min_length=1)
    price: float = Field(..., ge=0, description="Entry fee")
    prize_money: float = Field(0, ge=0)
    task_instruction: str = ""
    deadline: datetime
    creator_uid: str
    creator_email: Optional[str] = None
    status: ContestStatus = "pending"
    participants: int = Field(0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)


class Submission(CamelModel):
    contest_id: str
    uid: str
    email: Optional[str] = None
    name: str = ""
    photo_url: str = ""
    task: str = Field(..., description="Free-form task payload (link, text)")
    submitted_at: datetime = Field(default_factory=utcnow)


class Payment(CamelModel):
    uid: str
    email: Optional[str] = None
    contest_id: str
    status: Literal["succeeded"] = "succeeded"
    transaction_id: Optional[str] = Field(None, description="Gateway checkout session id")
    created_at: datetime = Field(default_factory=utcnow)


# Request bodies

def _with_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserLogin(CamelModel):
    uid: str = Field(..., min_length=1)
    email: EmailStr
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    address: Optional[str] = None


class ProfileUpdate(CamelModel):
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    address: Optional[str] = None


class RoleChange(CamelModel):
    # Checked by hand so a bad value is a 400, not a 422
    role: str


class ContestCreate(CamelModel):
    name: str = Field(..., min_length=1)
    image: str = ""
    description: str = ""
    category: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    prize_money: float = Field(0, ge=0)
    task_instruction: str = ""
    deadline: datetime

    @field_validator("deadline")
    @classmethod
    def utc_deadline(cls, value: datetime) -> datetime:
        return _with_utc(value)


class ContestUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    image: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    prize_money: Optional[float] = Field(None, ge=0)
    task_instruction: Optional[str] = None
    deadline: Optional[datetime] = None

    @field_validator("deadline")
    @classmethod
    def utc_deadline(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _with_utc(value) if value is not None else value


class WinnerDeclaration(CamelModel):
    winner_uid: str = Field(..., min_length=1)


class ModerationRequest(CamelModel):
    action: str


class SubmissionCreate(CamelModel):
    contest_id: str
    task: str = Field(..., min_length=1)
    name: Optional[str] = None
    photo_url: Optional[str] = None


class CreatorSubmissionsQuery(CamelModel):
    contest_ids: List[str] = Field(default_factory=list)


class PaymentRecord(CamelModel):
    contest_id: str
    transaction_id: Optional[str] = None


class CheckoutRequest(CamelModel):
    contest_id: str
