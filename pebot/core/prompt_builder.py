"""Assistant instructions from a markdown document."""

import logging
from pathlib import Path
from typing import Optional

import frontmatter

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = (
    "You are a helpful Performance Engineering assistant with access to Confluence documentation. "
    "When asked questions about documentation, processes, or recent updates, search Confluence "
    "and provide information about page content, contributors, and modification times. "
    "Always include links to the pages you reference. "
    "If a tool returns an error, say so briefly and offer to help with something else."
)


class PromptBuilder:
    """Builds assistant instructions from INSTRUCTIONS.md.

    The file may carry YAML front matter with ``name`` and ``description``;
    the markdown body becomes the instructions.
    """

    def __init__(self, instructions_file: Path, default: str = DEFAULT_INSTRUCTIONS):
        self.instructions_file = Path(instructions_file)
        self.default = default
        self._cached_prompt: Optional[str] = None
        self._metadata: dict = {}

    def _load(self) -> Optional[frontmatter.Post]:
        """Parse the instructions file if it exists."""
        if not self.instructions_file.exists():
            return None
        try:
            return frontmatter.load(self.instructions_file)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not parse {self.instructions_file}: {e}")
            return None

    def build_instructions(self) -> str:
        """Return the assistant instructions, falling back to the built-in prompt."""
        if self._cached_prompt:
            return self._cached_prompt

        post = self._load()
        if post is not None and post.content.strip():
            self._metadata = dict(post.metadata)
            self._cached_prompt = post.content.strip()
            logger.info(f"Loaded assistant instructions from {self.instructions_file}")
        else:
            self._metadata = {}
            self._cached_prompt = self.default

        return self._cached_prompt

    @property
    def assistant_name(self) -> str:
        self.build_instructions()
        return str(self._metadata.get("name") or "PE Bot")

    @property
    def description(self) -> str:
        self.build_instructions()
        return str(self._metadata.get("description") or "")

    def reload(self) -> str:
        """Clear cache and rebuild instructions."""
        self._cached_prompt = None
        self._metadata = {}
        return self.build_instructions()
