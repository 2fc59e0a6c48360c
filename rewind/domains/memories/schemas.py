"""Memories domain Pydantic schemas."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

BSKY_APP_URL = "https://bsky.app"
SHARE_TAGLINE = "Check out your memories on ATRewind.com"


def _parse_engagement(value: Any) -> Optional[int]:
    # bool is an int subclass but never a count
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


class RemoteRecord(BaseModel):
    """One post from the account's repository, validated at the listing boundary."""

    model_config = ConfigDict(frozen=True)

    uri: str = Field(min_length=1)
    cid: Optional[str] = None
    created_at: datetime
    text: Optional[str] = None
    engagement: Optional[int] = None

    @field_validator("created_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @property
    def rkey(self) -> str:
        return self.uri.rstrip("/").rsplit("/", 1)[-1]

    @property
    def engagement_score(self) -> int:
        return self.engagement or 0

    @classmethod
    def from_listing(cls, item: Any) -> Optional["RemoteRecord"]:
        """
        Build a record from a ``listRecords`` entry.

        Returns None for entries without a uri or a parseable ``createdAt``.
        """
        if not isinstance(item, dict):
            return None
        value = item.get("value")
        if not isinstance(value, dict):
            return None
        created_at = value.get("createdAt")
        # Numbers would pass as unix times; records carry RFC 3339 strings
        if not isinstance(created_at, str) or not created_at:
            logger.debug("Skipping record without a valid createdAt: %s", item.get("uri"))
            return None
        text = value.get("text")
        try:
            return cls(
                uri=item.get("uri") or "",
                cid=item.get("cid") if isinstance(item.get("cid"), str) else None,
                created_at=created_at,
                text=text if isinstance(text, str) else None,
                engagement=_parse_engagement(value.get("likeCount")),
            )
        except ValidationError:
            logger.debug("Skipping malformed record or createdAt: %s", item.get("uri"))
            return None


class Profile(BaseModel):
    """Signed-in account's public profile."""

    identity: str
    handle: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> Optional["Profile"]:
        did = data.get("did")
        if not isinstance(did, str) or not did:
            return None
        return cls(
            identity=did,
            handle=data.get("handle") if isinstance(data.get("handle"), str) else None,
            display_name=data.get("displayName") or None,
            avatar_url=data.get("avatar") or None,
        )

    @property
    def profile_url(self) -> str:
        return f"{BSKY_APP_URL}/profile/{self.identity}"


class SelectedMemory(BaseModel):
    """The post picked for today, plus how many years ago it was written."""

    record: RemoteRecord
    years_ago: int = Field(default=1, ge=1)

    @property
    def heading(self) -> str:
        return f"{self.years_ago} year{'s' if self.years_ago > 1 else ''} ago today"

    def post_url(self, handle: Optional[str]) -> str:
        if not handle:
            return ""
        return f"{BSKY_APP_URL}/profile/{handle}/post/{self.record.rkey}"

    def compose_url(self, handle: Optional[str]) -> str:
        text = f"{self.heading}\n\n{SHARE_TAGLINE}\n\n{self.post_url(handle)}"
        return f"{BSKY_APP_URL}/intent/compose?text={quote(text, safe='')}"


class MemoryView(BaseModel):
    """What the presentation layer receives for the home page."""

    selected_memory: Optional[SelectedMemory] = None
    profile: Optional[Profile] = None

    def to_dict(self) -> dict:
        memory = None
        if self.selected_memory is not None:
            record = self.selected_memory.record
            handle = self.profile.handle if self.profile else None
            memory = {
                "years_ago": self.selected_memory.years_ago,
                "heading": self.selected_memory.heading,
                "record": {
                    "uri": record.uri,
                    "cid": record.cid,
                    "text": record.text,
                    "created_at": record.created_at.isoformat(),
                    "like_count": record.engagement,
                },
                "post_url": self.selected_memory.post_url(handle) or None,
                "compose_url": self.selected_memory.compose_url(handle),
            }
        return {
            "selected_memory": memory,
            "profile": self.profile.model_dump() if self.profile else None,
        }
