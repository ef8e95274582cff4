"""Azure OpenAI Assistants API client."""

import logging
from typing import Optional, Any

import httpx

from pebot.config import AssistantSettings
from .auth import CredentialError
from .base import (
    FILE_SEARCH_TOOL,
    AssistantsAPIError,
    Run,
    ToolOutput,
)

logger = logging.getLogger(__name__)


class AssistantsClient:
    """Thin async wrapper over the Assistants REST endpoints.

    Every call is one HTTP round-trip; non-2xx responses and transport failures
    raise ``AssistantsAPIError`` with the status code and response body.
    """

    def __init__(
        self,
        settings: AssistantSettings,
        credential,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            settings: Endpoint, api version and assistant configuration.
            credential: Object exposing ``async get_headers() -> dict``.
            http_client: Optional pre-built client (for testing).
        """
        self.settings = settings
        self._credential = credential
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.settings.url,
                timeout=self.settings.timeout,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> dict:
        """Send a request and decode the JSON body."""
        client = await self._get_client()
        headers = {"Accept": "application/json"}
        try:
            headers.update(await self._credential.get_headers())
        except CredentialError as e:
            raise AssistantsAPIError(f"Failed to {action}: {e}") from e
        query = {"api-version": self.settings.api_version}
        if params:
            query.update(params)

        try:
            response = await client.request(
                method,
                f"/openai/{path}",
                params=query,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise AssistantsAPIError(f"Failed to {action}: {e}") from e

        if response.is_error:
            raise AssistantsAPIError(
                f"Failed to {action}: {response.status_code}. Details: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AssistantsAPIError(f"Failed to {action}: invalid JSON response") from e
        if not isinstance(data, dict):
            raise AssistantsAPIError(f"Failed to {action}: expected a JSON object, got {type(data).__name__}")
        return data

    # Assistant setup

    async def get_assistant(self, assistant_id: str) -> Optional[dict]:
        """Fetch an assistant, or None if it does not exist."""
        try:
            return await self._request("GET", f"assistants/{assistant_id}", "get assistant")
        except AssistantsAPIError as e:
            if e.status_code == 404:
                return None
            raise

    async def create_assistant(self, instructions: str, name: str = "PE Bot") -> str:
        """Create an assistant with file search enabled."""
        payload: dict[str, Any] = {
            "model": self.settings.deployment,
            "name": name,
            "instructions": instructions,
            "tools": [{"type": FILE_SEARCH_TOOL}],
        }
        if self.settings.vector_store_id:
            payload["tool_resources"] = {
                FILE_SEARCH_TOOL: {"vector_store_ids": [self.settings.vector_store_id]},
            }

        data = await self._request("POST", "assistants", "create assistant", json=payload)
        assistant_id = data.get("id")
        if not assistant_id:
            raise AssistantsAPIError("Failed to get assistant ID from response")
        logger.info(f"Created assistant {assistant_id}")
        return assistant_id

    async def update_assistant(self, assistant_id: str, **fields: Any) -> dict:
        return await self._request("POST", f"assistants/{assistant_id}", "update assistant", json=fields)

    async def ensure_assistant(self, assistant_id: str, instructions: str, name: str = "PE Bot") -> str:
        """Verify the configured assistant, creating a new one if needed.

        An existing assistant gets its instructions refreshed and the file
        search tool plus configured vector store attached. Failures while
        updating an existing assistant are logged, not raised.
        """
        if not assistant_id:
            logger.info("No assistant ID configured. Creating a new assistant...")
            return await self.create_assistant(instructions, name)

        assistant = await self.get_assistant(assistant_id)
        if assistant is None:
            logger.warning(f"Assistant {assistant_id} not found. Creating a new assistant...")
            return await self.create_assistant(instructions, name)

        logger.info(f"Using existing assistant {assistant_id}")
        updates: dict[str, Any] = {}
        if instructions and assistant.get("instructions") != instructions:
            updates["instructions"] = instructions

        tools = assistant.get("tools") or []
        if not any(isinstance(t, dict) and t.get("type") == FILE_SEARCH_TOOL for t in tools):
            logger.warning(f"Assistant {assistant_id} is missing the {FILE_SEARCH_TOOL} tool, adding it")
            updates["tools"] = list(tools) + [{"type": FILE_SEARCH_TOOL}]

        vector_store_id = self.settings.vector_store_id
        if vector_store_id and vector_store_id not in vector_store_ids(assistant):
            logger.warning(f"Assistant {assistant_id} is not configured with vector store {vector_store_id}")
            updates["tool_resources"] = {FILE_SEARCH_TOOL: {"vector_store_ids": [vector_store_id]}}

        if updates:
            try:
                await self.update_assistant(assistant_id, **updates)
                logger.info(f"Updated assistant {assistant_id}: {sorted(updates)}")
            except AssistantsAPIError as e:
                logger.warning(f"Assistant exists but updates failed: {e}")

        return assistant_id

    async def list_assistant_files(self, assistant_id: str) -> list[dict]:
        data = await self._request("GET", f"assistants/{assistant_id}/files", "get assistant files")
        return [item for item in data.get("data", []) if isinstance(item, dict)]

    async def get_assistant_vector_stores(self, assistant_id: str) -> list[str]:
        assistant = await self._request("GET", f"assistants/{assistant_id}", "get assistant")
        return vector_store_ids(assistant)

    # Threads and messages

    async def create_thread(self) -> str:
        data = await self._request("POST", "threads", "create thread", json={})
        thread_id = data.get("id")
        if not thread_id:
            raise AssistantsAPIError("Failed to get thread ID from response")
        logger.info(f"Created new thread {thread_id}")
        return thread_id

    async def add_message(self, thread_id: str, role: str, content: str) -> str:
        data = await self._request(
            "POST",
            f"threads/{thread_id}/messages",
            "add message to thread",
            json={"role": role, "content": content},
        )
        message_id = data.get("id")
        if not message_id:
            raise AssistantsAPIError("Failed to get message ID from response")
        return message_id

    async def get_latest_message(self, thread_id: str) -> str:
        """Return the text of the newest message if it was written by the assistant."""
        data = await self._request(
            "GET",
            f"threads/{thread_id}/messages",
            "get messages",
            params={"order": "desc", "limit": 1},
        )
        messages = data.get("data") or []
        if not messages or messages[0].get("role") != "assistant":
            return ""

        parts = []
        for item in messages[0].get("content") or []:
            if isinstance(item, dict) and item.get("type") == "text":
                text = item.get("text") or {}
                parts.append(text.get("value", "") if isinstance(text, dict) else str(text))
        return "".join(parts)

    # Runs

    async def create_run(self, thread_id: str, assistant_id: str, tools: list[dict]) -> Run:
        logger.info(f"Creating run with {len(tools)} tools...")
        data = await self._request(
            "POST",
            f"threads/{thread_id}/runs",
            "create run",
            json={"assistant_id": assistant_id, "tools": tools},
        )
        run = Run.from_api(data)
        if not run.id:
            raise AssistantsAPIError("Failed to get run ID from response")
        return run

    async def get_run(self, thread_id: str, run_id: str) -> Run:
        data = await self._request("GET", f"threads/{thread_id}/runs/{run_id}", "get run status")
        logger.debug(f"Run {run_id} payload: {data}")
        return Run.from_api(data)

    async def submit_tool_outputs(self, thread_id: str, run_id: str, outputs: list[ToolOutput]) -> Run:
        logger.info(f"Submitting {len(outputs)} tool outputs for run {run_id}")
        data = await self._request(
            "POST",
            f"threads/{thread_id}/runs/{run_id}/submit_tool_outputs",
            "submit tool outputs",
            json={"tool_outputs": [output.to_api() for output in outputs]},
        )
        return Run.from_api(data)

    async def cancel_run(self, thread_id: str, run_id: str) -> Run:
        data = await self._request("POST", f"threads/{thread_id}/runs/{run_id}/cancel", "cancel run")
        return Run.from_api(data)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        await self._credential.aclose()


def vector_store_ids(assistant: dict) -> list[str]:
    """Vector store ids attached to an assistant's file search resources."""
    resources = assistant.get("tool_resources") or {}
    file_search = resources.get(FILE_SEARCH_TOOL) or {}
    return [vid for vid in file_search.get("vector_store_ids") or [] if vid]
