"""Value types shared by the store, the services and the platform connectors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from crosspost.errors import ConfigurationError, MediaResolutionError


class Platform(str, Enum):
    LINKEDIN = "linkedin"
    TWITTER = "twitter"
    INSTAGRAM = "instagram"
    THREADS = "threads"

    @classmethod
    def parse(cls, value: str) -> "Platform":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown platform: {value}") from None


class PostStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    FAILED = "failed"


IDENTITY_DELIMITER = "|"


@dataclass(frozen=True)
class AccountIdentity:
    """Who a connection publishes as.

    ``platform_account_id`` is the id the platform APIs address (LinkedIn member
    id, Instagram Business Account id, Threads user id). ``parent_account_id`` is
    the owning container when there is one (the Facebook Page behind an Instagram
    account).
    """

    username: str = ""
    platform_account_id: Optional[str] = None
    parent_account_id: Optional[str] = None

    def serialize(self) -> str:
        parts = [self.username or "", self.platform_account_id or "", self.parent_account_id or ""]
        while len(parts) > 1 and not parts[-1]:
            parts.pop()
        return IDENTITY_DELIMITER.join(parts)

    @classmethod
    def deserialize(cls, value: Optional[str]) -> "AccountIdentity":
        if not value:
            return cls()
        parts = value.split(IDENTITY_DELIMITER)
        parts += [""] * (3 - len(parts))
        username, account_id, parent_id = parts[0], parts[1], parts[2]
        return cls(
            username=username,
            platform_account_id=account_id or None,
            parent_account_id=parent_id or None,
        )


@dataclass(frozen=True)
class MediaAsset:
    """One entry of a post's ordered media list."""

    type: str  # "image" or "video"
    url: str
    filename: Optional[str] = None

    @property
    def is_video(self) -> bool:
        return self.type == "video"

    @property
    def is_image(self) -> bool:
        return self.type == "image"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MediaAsset":
        if not isinstance(data, Mapping):
            raise MediaResolutionError(f"Invalid media asset entry: {data!r}")
        media_type = str(data.get("type") or "").lower()
        url = data.get("url")
        if media_type not in ("image", "video"):
            raise MediaResolutionError(f"Unsupported media type: {data.get('type')!r}")
        if not url:
            raise MediaResolutionError("Media asset is missing a url")
        return cls(type=media_type, url=str(url), filename=data.get("filename"))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "url": self.url, "filename": self.filename}


@dataclass(frozen=True)
class Mention:
    """A person or organization referenced by a post."""

    type: str  # "person" or "organization"
    urn: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.type == "person":
            full = " ".join(p for p in (self.first_name, self.last_name) if p)
            return full or (self.name or "")
        return self.name or ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Mention":
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Invalid mention entry: {data!r}")
        return cls(
            type=str(data.get("type") or "person"),
            urn=data.get("urn"),
            first_name=data.get("first_name") or data.get("firstName"),
            last_name=data.get("last_name") or data.get("lastName"),
            name=data.get("name"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "urn": self.urn,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "name": self.name,
        }


def render_mentions(content: str, mentions: Iterable[Mention]) -> str:
    """Append each mention as literal ``@Display Name`` text.

    Mentions already present in the text are not appended again.
    """
    tags: list[str] = []
    for mention in mentions:
        name = mention.display_name.strip()
        if not name:
            continue
        tag = f"@{name}"
        if tag in content or tag in tags:
            continue
        tags.append(tag)
    if not tags:
        return content
    separator = "\n\n" if content else ""
    return f"{content}{separator}{' '.join(tags)}"
