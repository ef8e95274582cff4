"""Configuration management for PE-Bot."""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(key: str, default: str = "false") -> bool:
    """Read a boolean environment variable ("true", "1", "yes")."""
    return os.getenv(key, default).strip().lower() in ("true", "1", "yes")


def _parse_priorities(raw: str) -> dict[str, int]:
    """Parse "KEY:weight,KEY2:weight" into a space priority map."""
    priorities = {}
    for item in raw.split(","):
        if ":" not in item:
            continue
        key, _, weight = item.partition(":")
        try:
            priorities[key.strip()] = int(weight.strip())
        except ValueError:
            continue
    return priorities


@dataclass
class SlackConfig:
    """Slack Socket Mode configuration."""
    app_token: str = field(default_factory=lambda: os.getenv("SLACK_APP_TOKEN", ""))
    bot_token: str = field(default_factory=lambda: os.getenv("SLACK_BOT_TOKEN", ""))
    max_sessions: int = field(default_factory=lambda: int(os.getenv("SLACK_MAX_SESSIONS", "500")))


@dataclass
class AssistantSettings:
    """Azure OpenAI Assistants configuration.

    One orchestrator serves every auth mode; ``use_managed_identity`` selects
    bearer tokens from the managed identity endpoint instead of the api key.
    """
    url: str = field(default_factory=lambda: os.getenv("AZURE_OPENAI_URL", "").rstrip("/"))
    api_key: str = field(default_factory=lambda: os.getenv("AZURE_OPENAI_KEY", ""))
    api_version: str = field(default_factory=lambda: os.getenv("AZURE_OPENAI_API_VERSION", "2024-05-01-preview"))
    assistant_id: str = field(default_factory=lambda: os.getenv("AZURE_OPENAI_ASSISTANT_ID", ""))
    deployment: str = field(default_factory=lambda: os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4o-mini"))
    vector_store_id: Optional[str] = field(default_factory=lambda: os.getenv("AZURE_OPENAI_VECTOR_STORE_ID") or None)
    use_managed_identity: bool = field(default_factory=lambda: _env_flag("AZURE_OPENAI_USE_MANAGED_IDENTITY"))
    timeout: float = field(default_factory=lambda: float(os.getenv("AZURE_OPENAI_TIMEOUT", "60")))


@dataclass
class RunSettings:
    """Run polling and recovery limits."""
    initial_delay: float = field(default_factory=lambda: int(os.getenv("RUN_POLL_INITIAL_DELAY_MS", "1000")) / 1000)
    max_delay: float = field(default_factory=lambda: int(os.getenv("RUN_POLL_MAX_DELAY_MS", "5000")) / 1000)
    max_polls: int = field(default_factory=lambda: int(os.getenv("RUN_POLL_MAX_POLLS", "100")))
    max_action_rounds: int = field(default_factory=lambda: int(os.getenv("RUN_MAX_ACTION_ROUNDS", "10")))
    fallback_timeout: float = field(default_factory=lambda: float(os.getenv("RUN_FALLBACK_TIMEOUT", "30")))


@dataclass
class ConfluenceConfig:
    """Confluence Cloud configuration (optional)."""
    domain: str = field(default_factory=lambda: os.getenv("CONFLUENCE_DOMAIN", ""))
    email: str = field(default_factory=lambda: os.getenv("CONFLUENCE_EMAIL", ""))
    api_token: str = field(default_factory=lambda: os.getenv("CONFLUENCE_API_TOKEN", ""))
    space_priorities: dict[str, int] = field(
        default_factory=lambda: _parse_priorities(os.getenv("CONFLUENCE_SPACE_PRIORITIES", ""))
    )

    @property
    def enabled(self) -> bool:
        return bool(self.domain and self.email and self.api_token)

    @property
    def base_url(self) -> str:
        if self.domain.startswith(("http://", "https://")):
            return self.domain.rstrip("/")
        return f"https://{self.domain.rstrip('/')}"


@dataclass
class PathsConfig:
    """File system paths configuration."""
    instructions_file: Path = field(default_factory=lambda: Path(os.getenv("INSTRUCTIONS_FILE", "./INSTRUCTIONS.md")))
    log_dir: Path = field(default_factory=lambda: Path(os.getenv("LOG_DIR", "./logs")))


@dataclass
class Config:
    """Main configuration container."""
    slack: SlackConfig = field(default_factory=SlackConfig)
    assistant: AssistantSettings = field(default_factory=AssistantSettings)
    run: RunSettings = field(default_factory=RunSettings)
    confluence: ConfluenceConfig = field(default_factory=ConfluenceConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    def validate(self, require_slack: bool = True) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if require_slack:
            if not self.slack.app_token:
                errors.append("SLACK_APP_TOKEN is required")
            if not self.slack.bot_token:
                errors.append("SLACK_BOT_TOKEN is required")

        if not self.assistant.url:
            errors.append("AZURE_OPENAI_URL is required")
        elif not self.assistant.url.startswith(("http://", "https://")):
            errors.append(f"AZURE_OPENAI_URL is not a valid URL: {self.assistant.url}")

        # The key is only needed when not authenticating with a managed identity
        if not self.assistant.use_managed_identity and not self.assistant.api_key:
            errors.append("AZURE_OPENAI_KEY is required when not using a managed identity")

        if self.run.initial_delay <= 0 or self.run.max_delay < self.run.initial_delay:
            errors.append("RUN_POLL_MAX_DELAY_MS must be >= RUN_POLL_INITIAL_DELAY_MS > 0")
        if self.run.max_polls < 1:
            errors.append("RUN_POLL_MAX_POLLS must be at least 1")
        if require_slack and self.slack.max_sessions < 1:
            errors.append("SLACK_MAX_SESSIONS must be at least 1")

        return errors


# Global config instance
config = Config()
