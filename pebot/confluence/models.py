"""Confluence REST payload shapes."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Any


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp ("2024-05-01T12:00:00.000Z") as aware UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


@dataclass
class UserInfo:
    id: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "UserInfo":
        data = _dict(data)
        return cls(
            id=data.get("accountId") or data.get("id"),
            username=data.get("username") or data.get("publicName"),
            display_name=data.get("displayName"),
        )


@dataclass
class VersionInfo:
    number: Optional[int] = None
    when: Optional[datetime] = None
    message: Optional[str] = None
    by: Optional[UserInfo] = None

    @classmethod
    def from_dict(cls, data: dict) -> "VersionInfo":
        data = _dict(data)
        return cls(
            number=data.get("number"),
            when=parse_timestamp(data.get("when") or data.get("createdAt")),
            message=data.get("message"),
            by=UserInfo.from_dict(data["by"]) if isinstance(data.get("by"), dict) else None,
        )


@dataclass
class SpaceInfo:
    id: Optional[str] = None
    key: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "SpaceInfo":
        data = _dict(data)
        # Space ids come back as numbers from v1 and strings from v2
        space_id = data.get("id")
        return cls(
            id=str(space_id) if space_id is not None else None,
            key=data.get("key"),
            name=data.get("name"),
        )


@dataclass
class SearchResult:
    id: Optional[str] = None
    type: Optional[str] = None
    title: Optional[str] = None
    space: Optional[SpaceInfo] = None
    status: Optional[str] = None
    version: Optional[VersionInfo] = None

    @property
    def last_updated(self) -> Optional[datetime]:
        return self.version.when if self.version else None

    @classmethod
    def from_dict(cls, data: dict) -> "SearchResult":
        data = _dict(data)
        # v1 CQL search wraps the page in "content"
        content = _dict(data.get("content")) or data
        result_id = content.get("id")
        return cls(
            id=str(result_id) if result_id is not None else None,
            type=content.get("type"),
            title=content.get("title") or data.get("title"),
            space=SpaceInfo.from_dict(content.get("space") or data.get("space")),
            status=content.get("status"),
            version=VersionInfo.from_dict(content.get("version") or data.get("version")),
        )


@dataclass
class SearchResponse:
    results: list[SearchResult] = field(default_factory=list)
    start: Optional[int] = None
    limit: Optional[int] = None
    size: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "SearchResponse":
        data = _dict(data)
        return cls(
            results=[SearchResult.from_dict(item) for item in data.get("results") or [] if isinstance(item, dict)],
            start=data.get("start"),
            limit=data.get("limit"),
            size=data.get("size"),
        )


@dataclass
class ConfluencePage:
    id: Optional[str] = None
    type: Optional[str] = None
    title: Optional[str] = None
    body_storage: Optional[str] = None
    space: Optional[SpaceInfo] = None
    version: Optional[VersionInfo] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ConfluencePage":
        data = _dict(data)
        body = _dict(data.get("body"))
        storage = _dict(body.get("storage"))
        page_id = data.get("id")
        return cls(
            id=str(page_id) if page_id is not None else None,
            type=data.get("type"),
            title=data.get("title"),
            body_storage=storage.get("value"),
            space=SpaceInfo.from_dict(data["space"]) if isinstance(data.get("space"), dict) else None,
            version=VersionInfo.from_dict(data["version"]) if isinstance(data.get("version"), dict) else None,
        )
