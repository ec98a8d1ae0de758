"""
Database and API models for RFD Discussions.

This module defines the SQLAlchemy ORM model for the discussion mapping and
Pydantic models for the webhook payload sent by the RFD tool.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import Float, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

DISCUSSION_KEY_PREFIX = "rfd-discussion:"


def discussion_key(rfd_id: str) -> str:
    """Namespaced store key for an RFD id."""
    return f"{DISCUSSION_KEY_PREFIX}{rfd_id}"


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""


class DiscussionRecord(Base):
    """ORM model mapping an RFD to the discussion room created for it."""

    __tablename__ = "rfd_discussions"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    rfd_id: Mapped[str] = mapped_column(String, nullable=False)
    room_id: Mapped[str] = mapped_column(String, nullable=False)
    room_url: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert ORM model to dictionary."""
        return {
            "rfd_id": self.rfd_id,
            "room_id": self.room_id,
            "room_url": self.room_url,
            "created_at": self.created_at,
        }


# ============================================================
# RFD payload models
# ============================================================

class RFDState(str, Enum):
    """Lifecycle state of an RFD."""

    PREDISCUSSION = "prediscussion"
    IDEATION = "ideation"
    DISCUSSION = "discussion"
    PUBLISHED = "published"
    COMMITTED = "committed"
    ABANDONED = "abandoned"


STATE_DESCRIPTIONS: Dict[RFDState, str] = {
    RFDState.PREDISCUSSION: "🔒 Pre-Discussion - Not yet open for feedback",
    RFDState.IDEATION: "💡 Ideation - Early idea, feedback welcome",
    RFDState.DISCUSSION: "💬 Discussion - Actively seeking input",
    RFDState.PUBLISHED: "📋 Published - Accepted, open for comments",
    RFDState.COMMITTED: "✅ Committed - Implemented",
    RFDState.ABANDONED: "❌ Abandoned - No longer being pursued",
}


def describe_state(state: RFDState) -> str:
    return STATE_DESCRIPTIONS[RFDState(state)]


class RFDModel(BaseModel):
    """An RFD as sent by the RFD tool."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    title: str = ""
    authors: List[str] = Field(default_factory=list)
    state: RFDState
    discussion: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    content: str = ""
    content_md: str = Field(default="", alias="contentMD")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    modified_at: Optional[str] = Field(default=None, alias="modifiedAt")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("discussion", mode="before")
    @classmethod
    def blank_discussion_is_absent(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class FieldChange(BaseModel):
    """An (old, new) pair for a changed field."""

    model_config = ConfigDict(populate_by_name=True)

    old: Any = None
    new: Any = None


class StateChange(FieldChange):
    old: RFDState
    new: RFDState


class TextChange(FieldChange):
    old: Optional[str] = None
    new: Optional[str] = None


class ListChange(FieldChange):
    old: List[str] = Field(default_factory=list)
    new: List[str] = Field(default_factory=list)


class RFDChanges(BaseModel):
    """Diff that accompanies an ``rfd.updated`` event.  Absent means unchanged."""

    model_config = ConfigDict(extra="ignore")

    title: Optional[TextChange] = None
    state: Optional[StateChange] = None
    authors: Optional[ListChange] = None
    tags: Optional[ListChange] = None
    discussion: Optional[TextChange] = None
    content: Optional[bool] = None

    def is_empty(self) -> bool:
        """True when no field is marked as changed."""
        return (
            self.title is None
            and self.state is None
            and self.authors is None
            and self.tags is None
            and self.discussion is None
            and not self.content
        )


class WebhookPayload(BaseModel):
    """Body of a webhook delivery from the RFD tool."""

    model_config = ConfigDict(extra="ignore")

    event: Literal["rfd.created", "rfd.updated"]
    timestamp: Optional[str] = None
    rfd: RFDModel
    link: str = ""
    changes: Optional[RFDChanges] = None


class DiscussionRef(BaseModel):
    """Identifier and URL of a discussion room."""

    id: str
    url: str


class WebhookResponse(BaseModel):
    """Response body returned to the RFD tool."""

    success: bool
    discussion: Optional[DiscussionRef] = None
    error: Optional[str] = None
