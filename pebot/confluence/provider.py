"""Confluence Cloud documentation tools."""

import html
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Callable

import httpx

from pebot.config import ConfluenceConfig
from pebot.core.tool_registry import RegisteredTool, function_tool
from .models import ConfluencePage, SearchResponse, SearchResult

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = (
    "I couldn't find any results for that query in Confluence. "
    "Please try another search term or check if the information exists in Confluence."
)
API_ERROR_MESSAGE = (
    "I encountered an issue accessing Confluence. "
    "This might be due to incorrect configuration or API changes. Error details: {0}"
)
EMPTY_QUERY_MESSAGE = "Please provide a search term to look for in Confluence."
EMPTY_PAGE_ID_MESSAGE = "Please provide a valid Confluence page ID."

SEARCH_LIMIT = 25

TAG_PATTERN = re.compile(r"<[^>]+>")
BLOCK_TAG_PATTERN = re.compile(r"</?(p|br|li|tr|h[1-6]|div|table)\b[^>]*>", re.IGNORECASE)


class ConfluenceError(RuntimeError):
    """Confluence could not be reached with the configured credentials."""


def format_relative_time(when: Optional[datetime], now: datetime) -> str:
    """Human readable age of a timestamp ("3 days ago", "last year")."""
    if when is None:
        return "unknown date"

    span = now - when
    days = span.total_seconds() / 86400

    if days < 1:
        hours = int(span.total_seconds() // 3600)
        if hours < 1:
            return "just now"
        return f"{hours} hour{'' if hours == 1 else 's'} ago"
    if days < 7:
        count = int(days)
        return f"{count} day{'' if count == 1 else 's'} ago"
    if days < 30:
        count = int(days / 7)
        return f"{count} week{'' if count == 1 else 's'} ago"
    if days < 365:
        count = int(days / 30)
        return f"{count} month{'' if count == 1 else 's'} ago"

    years = int(days / 365)
    return "last year" if years == 1 else f"{years} years ago"


def strip_html(markup: str) -> str:
    """Plain text from Confluence storage format."""
    text = BLOCK_TAG_PATTERN.sub("\n", markup)
    text = TAG_PATTERN.sub("", text)
    text = html.unescape(text)
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


class ConfluenceInfoProvider:
    """Searches and reads Confluence pages for the assistant.

    Tool methods never raise: problems are returned as readable text so the
    assistant can relay them.
    """

    def __init__(
        self,
        settings: ConfluenceConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the provider.

        Args:
            settings: Domain, credentials and space priorities.
            http_client: Optional pre-built client (for testing).
            now: Clock used for relative times (for testing).
        """
        self.settings = settings
        self.base_url = settings.base_url
        self.api_base = "/wiki/api/v2"
        self.space_priorities = dict(settings.space_priorities)
        self._client = http_client
        self._now = now or (lambda: datetime.now(timezone.utc))
        logger.info(f"Initializing Confluence provider with URL: {self.base_url}")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.settings.email, self.settings.api_token),
                headers={"Accept": "application/json"},
                timeout=30.0,
            )
        return self._client

    async def _get(self, path: str, params: Optional[dict] = None) -> httpx.Response:
        client = await self._get_client()
        logger.debug(f"Confluence request: GET {path} {params or ''}")
        response = await client.get(path, params=params)
        logger.debug(f"Confluence response status code: {response.status_code}")
        return response

    async def validate_configuration(self) -> None:
        """Check the credentials against the spaces endpoint (v2, then v1).

        Raises:
            ConfluenceError: Neither API version accepted the request.
        """
        try:
            response = await self._get(f"{self.api_base}/spaces")
            if response.is_error:
                logger.info("v2 spaces endpoint failed, retrying with v1 API")
                response = await self._get("/wiki/rest/api/space")
        except httpx.HTTPError as e:
            raise ConfluenceError(f"Could not access Confluence API: {e}") from e

        if response.is_error:
            raise ConfluenceError(
                f"Could not access Confluence API. Status: {response.status_code}, Content: {response.text}"
            )
        logger.info("Confluence configuration validated successfully")

    def page_url(self, page_id: str, space_key: Optional[str] = None) -> str:
        host = httpx.URL(self.base_url).host
        return f"https://{host}/wiki/spaces/{space_key or 'UNKNOWN'}/pages/{page_id}"

    async def _search(self, v2_query: str, cql: str) -> SearchResponse:
        """Search with the v2 API, falling back to v1 CQL."""
        response = await self._get(
            f"{self.api_base}/search",
            params={"type": "page", "limit": SEARCH_LIMIT, "excerpt": "highlight", "query": v2_query},
        )
        if response.is_error:
            logger.info(f"v2 search failed ({response.status_code}), retrying with v1 CQL")
            response = await self._get(
                "/wiki/rest/api/content/search",
                params={"cql": cql, "expand": "space,version", "limit": SEARCH_LIMIT},
            )

        if response.is_error:
            raise ConfluenceError(f"API request failed. Status: {response.status_code}, Content: {response.text}")

        return SearchResponse.from_dict(response.json())

    def _priority(self, result: SearchResult) -> int:
        key = result.space.key if result.space else None
        return self.space_priorities.get(key or "", 0)

    def _format_results(self, header: str, results: list[SearchResult]) -> str:
        now = self._now()
        lines = [header, ""]
        for result in results:
            space_key = (result.space.key if result.space else None) or "UNKNOWN"
            space_name = (result.space.name if result.space else None) or "Unknown Space"
            priority = self._priority(result)
            priority_tag = f" [Priority: {priority}]" if priority > 0 else ""

            lines.append(f"📄 {result.title}")
            lines.append(f"   Space: {space_name} ({space_key}){priority_tag}")
            lines.append(f"   Last Updated: {format_relative_time(result.last_updated, now)}")
            lines.append(f"   Link: {self.page_url(result.id or '', space_key)}")
            lines.append("")
        return "\n".join(lines).rstrip()

    @staticmethod
    def _updated_key(result: SearchResult) -> datetime:
        return result.last_updated or datetime.min.replace(tzinfo=timezone.utc)

    async def search_confluence(self, query: str) -> str:
        """Pages matching a query, highest priority space first."""
        if not query or not query.strip():
            return EMPTY_QUERY_MESSAGE

        logger.info(f"search_confluence called with query: {query}")
        quoted = f'"{query}"'
        try:
            search = await self._search(
                query,
                f"type=page AND (title ~ {quoted} OR text ~ {quoted}) ORDER BY lastmodified DESC",
            )
        except Exception as e:
            logger.error(f"Error in search_confluence: {e}")
            return API_ERROR_MESSAGE.format(e)

        results = [r for r in search.results if r.title]
        if not results:
            logger.info("No search results found")
            return NO_RESULTS_MESSAGE

        results.sort(key=lambda r: (self._priority(r), self._updated_key(r)), reverse=True)
        return self._format_results(
            f"Found {len(results)} relevant pages in Confluence (ordered by priority and date):",
            results,
        )

    async def get_related_pages(self, topic: str) -> str:
        """Same search, phrased for topic questions."""
        return await self.search_confluence(topic)

    async def _get_page(self, page_id: str, expand: str) -> ConfluencePage:
        response = await self._get(f"/wiki/rest/api/content/{page_id}", params={"expand": expand})
        response.raise_for_status()
        return ConfluencePage.from_dict(response.json())

    async def get_page_content(self, page_id: str) -> str:
        """Title, plain-text body and link of one page."""
        if not page_id or not page_id.strip():
            return EMPTY_PAGE_ID_MESSAGE

        try:
            page = await self._get_page(page_id.strip(), "body.storage,space")
        except Exception as e:
            logger.error(f"Error in get_page_content: {e}")
            return f"I encountered an error while retrieving the Confluence page: {e}"

        if not page.body_storage:
            logger.info(f"No content found for page {page_id}")
            return "Sorry, I couldn't find any content in that page."

        space_key = page.space.key if page.space else None
        return (
            f"📄 {page.title}\n\n"
            f"{strip_html(page.body_storage)}\n\n"
            f"View in Confluence: {self.page_url(page_id.strip(), space_key)}"
        )

    async def get_page_last_modified(self, page_id: str) -> str:
        if not page_id or not page_id.strip():
            return EMPTY_PAGE_ID_MESSAGE

        try:
            page = await self._get_page(page_id.strip(), "version,space")
        except Exception as e:
            logger.error(f"Error in get_page_last_modified: {e}")
            return f"I encountered an error while retrieving the last modification time: {e}"

        if not page.title:
            return "Sorry, I couldn't find that page in Confluence."

        when = page.version.when if page.version else None
        space_key = page.space.key if page.space else None
        return (
            f"📄 {page.title}\n"
            f"Last updated: {format_relative_time(when, self._now())}\n"
            f"View page: {self.page_url(page_id.strip(), space_key)}"
        )

    async def get_page_contributors(self, page_id: str) -> str:
        if not page_id or not page_id.strip():
            return EMPTY_PAGE_ID_MESSAGE

        try:
            response = await self._get(
                f"/wiki/rest/api/content/{page_id.strip()}/history",
                params={"expand": "contributors.publishers.users"},
            )
            response.raise_for_status()
            data = response.json()
        except Exception as e:
            logger.error(f"Error in get_page_contributors: {e}")
            return f"I encountered an error while retrieving page contributors: {e}"

        publishers = (data.get("contributors") or {}).get("publishers") or {}
        if isinstance(publishers, list):
            users = [(p or {}).get("user") for p in publishers]
        else:
            users = publishers.get("users") or []

        lines = ["Recent contributors to this page:", ""]
        for user in users:
            lines.append(f"👤 {(user or {}).get('displayName') or 'Unknown User'}")
        lines.append("")
        lines.append(f"View page: {self.page_url(page_id.strip())}")
        return "\n".join(lines)

    async def get_recent_updates(self, topic: str) -> str:
        """Pages updated within the last year, newest first; topic is optional."""
        topic = (topic or "").strip()
        since = (self._now() - timedelta(days=365)).strftime("%Y-%m-%d")
        logger.info(f"get_recent_updates called with topic '{topic}', filtering after {since}")

        if topic:
            quoted = f'"{topic}"'
            v2_query = f"{topic} AND lastModified >= {since}"
            cql = (
                f"type=page AND (title ~ {quoted} OR text ~ {quoted}) "
                f'AND lastmodified >= "{since}" ORDER BY lastmodified DESC'
            )
        else:
            v2_query = f"lastModified >= {since}"
            cql = f'type=page AND lastmodified >= "{since}" ORDER BY lastmodified DESC'

        try:
            search = await self._search(v2_query, cql)
        except Exception as e:
            logger.error(f"Error in get_recent_updates: {e}")
            return f"I encountered an error while retrieving recent updates: {e}"

        results = [r for r in search.results if r.title]
        if not results:
            if topic:
                return f'I couldn\'t find any pages about "{topic}" that have been updated in the last year.'
            return "I couldn't find any pages that have been updated in the last year."

        results.sort(key=self._updated_key, reverse=True)
        if topic:
            header = f'Recently updated pages about "{topic}" (within the last year):'
        else:
            header = "Recently updated pages in Confluence (within the last year):"
        return self._format_results(header, results)

    def tools(self) -> list[RegisteredTool]:
        """The provider's operations as assistant tools."""
        return [
            function_tool(
                "search_confluence",
                "I need to find documentation in Confluence about {query}",
                self.search_confluence,
                {"query": "What topic are you looking for information about?"},
            ),
            function_tool(
                "get_page_content",
                "Can you show me the content of the Confluence page with ID {page_id}?",
                self.get_page_content,
                {"page_id": "What is the ID of the page you want to see?"},
            ),
            function_tool(
                "get_related_pages",
                "What documentation do we have in Confluence about {topic}?",
                self.get_related_pages,
                {"topic": "What topic would you like to learn more about?"},
            ),
            function_tool(
                "get_page_last_modified",
                "What was the last time the Confluence page {page_id} was updated?",
                self.get_page_last_modified,
                {"page_id": "Which page's update time do you want to know?"},
            ),
            function_tool(
                "get_page_contributors",
                "Who has recently made changes to the Confluence page {page_id}?",
                self.get_page_contributors,
                {"page_id": "Which page's contributors do you want to see?"},
            ),
            function_tool(
                "get_recent_updates",
                "What are the most recently updated pages in Confluence about {topic}?",
                self.get_recent_updates,
                {"topic": "What topic's recent updates would you like to see? May be empty for all topics."},
                optional=("topic",),
            ),
        ]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
