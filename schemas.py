"""
Database Schemas for the Project Tracker

Each document model below maps to a MongoDB collection. The collection name is the
lowercased class name (e.g., User -> "user"). References between documents are
stored as ObjectIds.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


# Documents
class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="BCrypt hash of the password")
    confirmed: bool = Field(False, description="Set once the confirmation link is used")
    token: Optional[str] = Field(None, description="One-time token for confirmation or password reset")


class Project(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., description="Project name")
    description: str = Field(...)
    deadline: datetime = Field(...)
    client: str = Field(...)
    creator: ObjectId = Field(..., description="User _id of the creator")
    collaborators: List[ObjectId] = Field(default_factory=list)
    tasks: List[ObjectId] = Field(default_factory=list, description="Ordered task _ids")


class Task(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True)

    name: str = Field(...)
    description: str = Field(...)
    deadline: datetime = Field(...)
    priority: Priority = Field(...)
    state: bool = Field(False, description="False = pending, True = complete")
    complete: Optional[ObjectId] = Field(None, description="User _id that last changed state")
    project: ObjectId = Field(..., description="Parent project _id")


# Request models (no password_hash exposure)
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class EmailRequest(BaseModel):
    email: EmailStr


class NewPasswordRequest(BaseModel):
    password: str = Field(..., min_length=6)


class CollaboratorRemove(BaseModel):
    id: str


class ProjectCreate(BaseModel):
    name: str
    description: str
    deadline: datetime
    client: str


class ProjectUpdate(BaseModel):
    """Partial update: only the fields present in the request body are written."""
    name: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    client: Optional[str] = None


class TaskCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    project: str
    name: str
    description: str
    deadline: datetime
    priority: Priority


class TaskUpdate(BaseModel):
    """Partial update: only the fields present in the request body are written."""
    model_config = ConfigDict(use_enum_values=True)

    name: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    priority: Optional[Priority] = None


# Responses
class MessageResponse(BaseModel):
    msg: str


class LoginResponse(BaseModel):
    id: str = Field(..., alias="_id")
    name: str
    email: EmailStr
    token: str

    model_config = ConfigDict(populate_by_name=True)


def present_fields(update: BaseModel) -> dict:
    """Fields the client actually sent, explicit nulls dropped for required document fields."""
    return {k: v for k, v in update.model_dump(exclude_unset=True).items() if v is not None}
