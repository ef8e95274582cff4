"""Main entry point for PE-Bot."""

import argparse
import asyncio
import logging
from datetime import datetime
from typing import Optional

from slack_bolt.async_app import AsyncApp
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler

from pebot.config import config
from pebot.bot import SlackMessageHandler, setup_handlers
from pebot.confluence import ConfluenceInfoProvider
from pebot.core import ConversationSession, KeywordFallback, PromptBuilder, RunOrchestrator, ToolRegistry
from pebot.llm import AssistantsAPIError, AssistantsClient, build_credential

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Log to the console and to logs/pe-bot.log."""
    log_dir = config.paths.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, config.log_level, logging.INFO),
        handlers=[
            logging.StreamHandler(),  # Console output
            logging.FileHandler(log_dir / "pe-bot.log", encoding="utf-8"),  # File output
        ],
    )

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("slack_bolt").setLevel(logging.WARNING)


class PEBot:
    """Main PE-Bot application."""

    def __init__(self):
        self.config = config
        self.start_time = datetime.now()

        # Initialize components
        self.prompt_builder = PromptBuilder(config.paths.instructions_file)
        self.registry = ToolRegistry()
        self.client: Optional[AssistantsClient] = None
        self.confluence: Optional[ConfluenceInfoProvider] = None
        self.orchestrator: Optional[RunOrchestrator] = None
        self.assistant_id: Optional[str] = None
        self.app: Optional[AsyncApp] = None

    async def initialize_confluence(self) -> None:
        """Validate Confluence and register its tools, when configured."""
        if not self.config.confluence.enabled:
            logger.warning("Confluence is not configured, its tools will not be available")
            return

        self.confluence = ConfluenceInfoProvider(self.config.confluence)
        await self.confluence.validate_configuration()
        self.registry.register_all(self.confluence.tools())

    async def initialize(self, require_slack: bool = True) -> None:
        """Initialize all async components."""
        logger.info("Initializing PE-Bot...")

        # Validate configuration
        errors = self.config.validate(require_slack=require_slack)
        if errors:
            for error in errors:
                logger.error(f"Config error: {error}")
            raise ValueError("Configuration validation failed")

        settings = self.config.assistant
        credential = build_credential(settings.use_managed_identity, settings.api_key)
        self.client = AssistantsClient(settings, credential)
        logger.info(
            f"Using Azure OpenAI at {settings.url} "
            f"({'managed identity' if settings.use_managed_identity else 'api key'}, api-version {settings.api_version})"
        )

        await self.initialize_confluence()

        instructions = self.prompt_builder.build_instructions()
        logger.info(f"Loaded assistant instructions ({len(instructions)} chars)")
        self.assistant_id = await self.client.ensure_assistant(
            settings.assistant_id,
            instructions,
            self.prompt_builder.assistant_name,
        )
        await self.log_assistant_resources()

        run = self.config.run
        self.orchestrator = RunOrchestrator(
            self.client,
            self.assistant_id,
            self.registry,
            fallback=KeywordFallback(self.registry, timeout=run.fallback_timeout),
            initial_delay=run.initial_delay,
            max_delay=run.max_delay,
            max_polls=run.max_polls,
            max_action_rounds=run.max_action_rounds,
        )
        logger.info(f"PE-Bot initialized with {len(self.registry)} tools")

    async def log_assistant_resources(self) -> None:
        """Log the vector stores and files attached to the assistant."""
        try:
            stores = await self.client.get_assistant_vector_stores(self.assistant_id)
            files = await self.client.list_assistant_files(self.assistant_id)
        except AssistantsAPIError as e:
            logger.warning(f"Could not read assistant resources: {e}")
            return
        logger.info(f"Assistant {self.assistant_id}: vector stores {stores or 'none'}, {len(files)} files")

    async def new_session(self) -> ConversationSession:
        return await ConversationSession.start(self.client, self.orchestrator)

    async def ask(self, text: str) -> str:
        """Run a single question through the assistant."""
        await self.initialize(require_slack=False)
        try:
            session = await self.new_session()
            await session.add_user_message(text)
            return await session.get_response()
        finally:
            await self.shutdown()

    async def test_confluence(self, query: str) -> str:
        """Call the Confluence search tool directly."""
        if not self.config.confluence.enabled:
            raise ValueError("CONFLUENCE_DOMAIN, CONFLUENCE_EMAIL and CONFLUENCE_API_TOKEN are required")
        await self.initialize_confluence()
        try:
            return await self.confluence.search_confluence(query)
        finally:
            await self.shutdown()

    async def run(self) -> None:
        """Run the Slack bot."""
        await self.initialize()

        self.app = AsyncApp(token=self.config.slack.bot_token)
        auth = await self.app.client.auth_test()
        bot_user_id = auth.get("user_id", "")
        logger.info(f"Bot identity resolved: {bot_user_id}")

        handler = SlackMessageHandler(
            self.app.client,
            bot_user_id,
            self.new_session,
            max_sessions=self.config.slack.max_sessions,
        )
        setup_handlers(self.app, handler)

        socket_handler = AsyncSocketModeHandler(self.app, self.config.slack.app_token)
        logger.info("PE-Bot is listening for messages via Socket Mode. Press Ctrl+C to stop.")
        try:
            await socket_handler.start_async()
        except asyncio.CancelledError:
            pass
        finally:
            logger.info("Shutting down...")
            await socket_handler.close_async()
            await self.shutdown()

    async def shutdown(self) -> None:
        logger.info(f"PE-Bot stopped after {self.uptime}")
        if self.client is not None:
            await self.client.aclose()
        if self.confluence is not None:
            await self.confluence.aclose()

    @property
    def uptime(self) -> str:
        """Get formatted uptime string."""
        delta = datetime.now() - self.start_time
        hours, remainder = divmod(int(delta.total_seconds()), 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours:
            return f"{hours}h {minutes}m"
        return f"{minutes}m {seconds}s"


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pebot", description="Performance Engineering Slack assistant")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--ask", metavar="TEXT", help="ask the assistant one question and print the answer")
    group.add_argument("--test-confluence", metavar="QUERY", help="search Confluence directly and print the results")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None):
    """Entry point."""
    args = parse_args(argv)
    configure_logging()
    bot = PEBot()
    try:
        if args.test_confluence is not None:
            print(asyncio.run(bot.test_confluence(args.test_confluence)))
        elif args.ask:
            print(asyncio.run(bot.ask(args.ask)))
        else:
            asyncio.run(bot.run())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")


if __name__ == "__main__":
    main()
