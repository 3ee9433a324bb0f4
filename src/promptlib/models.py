"""Pydantic schemas for the Prompt Library API."""

import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

TITLE_LENGTH = 60
TITLE_ELLIPSIS = "…"

_TAG_SEPARATORS = re.compile(r"[,\s]+")

_OPTIONAL_TEXT_FIELDS = ("context", "description", "ai_tool", "use_case")

PROMPT_ID_PATTERN = r"^[A-Za-z0-9._~-]+$"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def split_tags(raw: Any) -> list[str]:
    """Split tag input into lowercase tokens.

    Accepts a single string ("Coding, Debug debug") or a list of strings.
    Order and duplicates are kept: the example gives ["coding", "debug", "debug"].
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    tags: list[str] = []
    for item in raw:
        tags.extend(t.strip().lower() for t in _TAG_SEPARATORS.split(str(item)))
    return [t for t in tags if t]


def default_title(content: str) -> str:
    """Derive a title from the leading characters of the prompt text."""
    content = content.strip()
    if len(content) > TITLE_LENGTH:
        return content[:TITLE_LENGTH] + TITLE_ELLIPSIS
    return content


def _blank_to_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class ApiModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PromptDraft(ApiModel):
    """A prompt as submitted by a client, before ownership and timestamps are applied.

    Any owner field the client sends is dropped: ownership always comes from
    the session.
    """

    # Ids travel as a single URL path segment
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), max_length=64, pattern=PROMPT_ID_PATTERN)
    content: str
    title: Optional[str] = Field(None, max_length=500)
    context: Optional[str] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    ai_tool: Optional[str] = Field(None, max_length=100)
    use_case: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    from_image: bool = False
    created_at: Optional[datetime] = None

    @field_validator("id")
    @classmethod
    def id_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("id must not be empty")
        return v

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("content must not be empty")
        return v

    @field_validator("title", *_OPTIONAL_TEXT_FIELDS)
    @classmethod
    def optional_text(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> list[str]:
        return split_tags(v)

    @field_validator("created_at")
    @classmethod
    def created_at_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @model_validator(mode="after")
    def fill_title(self) -> "PromptDraft":
        if self.title is None:
            self.title = default_title(self.content)
        return self


class PromptPatch(ApiModel):
    """Partial update. Only fields present in the request body are applied.

    Sending null (or a blank string) for an optional field clears it; a
    cleared title is derived from the content again.
    """

    content: Optional[str] = None
    title: Optional[str] = Field(None, max_length=500)
    context: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    ai_tool: Optional[str] = Field(None, max_length=100)
    use_case: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    from_image: Optional[bool] = None

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("content cannot be removed")
        v = v.strip()
        if not v:
            raise ValueError("content must not be empty")
        return v

    @field_validator("title", *_OPTIONAL_TEXT_FIELDS)
    @classmethod
    def optional_text(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> list[str]:
        return split_tags(v)

    def changes(self) -> dict[str, Any]:
        """Fields the client actually sent, snake_case."""
        changes = self.model_dump(exclude_unset=True)
        if changes.get("from_image") is None:
            changes.pop("from_image", None)
        return changes


class Prompt(ApiModel):
    """A stored prompt as returned by the API."""

    id: str
    content: str
    title: str
    context: Optional[str] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    ai_tool: Optional[str] = None
    use_case: Optional[str] = None
    rating: Optional[int] = None
    from_image: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: dict) -> "Prompt":
        """Build from a prompts table row."""
        return cls(
            id=row["id"],
            content=row["content"],
            title=row["title"],
            context=row["context"],
            description=row["description"],
            tags=json.loads(row["tags"] or "[]"),
            ai_tool=row["ai_tool"],
            use_case=row["use_case"],
            rating=row["rating"],
            from_image=bool(row["from_image"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def to_api(self) -> dict:
        """camelCase JSON-ready dict with absent optional fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Credentials(BaseModel):
    """Register/login body. Presence is checked by the auth layer for a clearer error."""

    email: Optional[str] = None
    password: Optional[str] = None


class Principal(BaseModel):
    """The authenticated caller."""

    id: str
    email: str


class SessionOut(Principal):
    token: str
