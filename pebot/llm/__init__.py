"""Azure OpenAI Assistants API access."""

from .base import AssistantsAPIError, Run, RunStatus, RunTimeoutError, ToolCall, ToolDefinition, ToolOutput
from .auth import ApiKeyCredential, CredentialError, ManagedIdentityCredential, build_credential
from .assistants_client import AssistantsClient

__all__ = [
    "ApiKeyCredential",
    "AssistantsAPIError",
    "AssistantsClient",
    "CredentialError",
    "ManagedIdentityCredential",
    "Run",
    "RunStatus",
    "RunTimeoutError",
    "ToolCall",
    "ToolDefinition",
    "ToolOutput",
    "build_credential",
]
