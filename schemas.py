"""
Database Schemas for the School Feedback API

Each stored Pydantic model maps to a MongoDB collection (User -> "users",
Post -> "posts", Notification -> "notifications", School -> "schools").
The *Create / *Update / *Request models are the validated request bodies
accepted by the routes.
"""

from datetime import datetime
from typing import Annotated, List, Literal, Optional

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

NotificationType = Literal["upvote", "comment", "mention"]


def _required_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


# Strings that are trimmed and must not be blank afterwards
Text = Annotated[str, AfterValidator(_required_text)]


# ----------------- Stored documents -----------------

class User(BaseModel):
    uid: str = Field(..., description="Stable identity from the identity provider")
    firstName: str = Field(..., description="Given name")
    lastName: str = Field(..., description="Family name")
    email: EmailStr = Field(..., description="Email address")
    role: str = Field(..., description="Role, e.g. student, parent, teacher")


class Comment(BaseModel):
    id: str = Field(..., description="Generated comment id")
    userId: str = Field(..., description="uid of the commenter")
    text: str = Field(..., description="Trimmed comment text")
    createdAt: datetime


class Post(BaseModel):
    userId: str = Field(..., description="uid of the owner")
    schoolName: str
    title: str
    feedback: str
    rating: int = Field(..., ge=1, le=5, description="Star rating, 1 to 5")
    postAnonymously: bool = False
    upvotes: int = Field(0, ge=0, description="Always equals len(upvotedBy)")
    upvotedBy: List[str] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)


class Notification(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    recipient: str = Field(..., description="uid receiving the notification")
    sender: str = Field(..., description="uid whose action produced it")
    type: NotificationType
    postId: ObjectId = Field(..., description="Stored as an ObjectId reference to the post")
    read: bool = False
    createdAt: datetime


class School(BaseModel):
    name: str
    type: str = Field(..., description="Public or Private")
    location: str
    description: Optional[str] = None


# ----------------- Request bodies -----------------

class UserCreate(BaseModel):
    uid: Optional[str] = Field(None, description="Must match the token uid when given")
    firstName: Text
    lastName: Text
    email: EmailStr
    role: Text


class UserUpdate(BaseModel):
    firstName: Optional[Text] = None
    lastName: Optional[Text] = None
    email: Optional[EmailStr] = None
    role: Optional[Text] = None


class PostCreate(BaseModel):
    schoolName: Text
    title: Text
    feedback: Text
    rating: int = Field(..., ge=1, le=5)
    postAnonymously: bool = False


class PostEdit(PostCreate):
    """Full-field edit of a post. Same shape and rules as creation."""

    type: Optional[str] = None


class UpvoteRequest(BaseModel):
    type: Literal["upvote"]


class CommentRequest(BaseModel):
    type: Literal["comment"]
    text: Text
