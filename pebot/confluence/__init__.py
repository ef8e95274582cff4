"""Confluence documentation search tools."""

from .models import ConfluencePage, SearchResponse, SearchResult, SpaceInfo, UserInfo, VersionInfo
from .provider import ConfluenceError, ConfluenceInfoProvider

__all__ = [
    "ConfluenceError",
    "ConfluenceInfoProvider",
    "ConfluencePage",
    "SearchResponse",
    "SearchResult",
    "SpaceInfo",
    "UserInfo",
    "VersionInfo",
]
