"""CLI entry point — runs either broker as a stdio JSON-RPC child process."""

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from pathlib import Path

import click
import httpx
from dotenv import load_dotenv

from leedz_broker.agent.broker import AgentBroker
from leedz_broker.agent.crud_client import LeedzApiClient
from leedz_broker.agent.translator import RequestTranslator
from leedz_broker.config import (
    AGENT_CONFIG_FILENAME,
    MAIL_CONFIG_FILENAME,
    AgentConfig,
    ConfigError,
    MailConfig,
    McpIdentity,
    default_config_path,
)
from leedz_broker.mail.broker import MailBroker
from leedz_broker.mail.gmail_api import GmailSender
from leedz_broker.mail.http_side import create_app, start_http_side
from leedz_broker.mail.token_store import TokenStore
from leedz_broker.rpc.dispatcher import Dispatcher, ToolHandler
from leedz_broker.rpc.frames import FrameLoop, FrameWriter, bind_stdio, read_lines
from leedz_broker.rpc.types import Session

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


def configure_logging(log_file: Path) -> None:
    """Everything to the log file; only warnings and errors to stderr.

    Nothing is ever logged to stdout — it carries the JSON-RPC stream.
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)
    root.addHandler(file_handler)
    root.addHandler(stderr_handler)
    # Keep third-party chatter at INFO even though the file sink takes DEBUG
    for noisy in ("httpx", "httpcore", "anthropic", "aiohttp"):
        logging.getLogger(noisy).setLevel(logging.INFO)


def _install_signal_handlers(stop: Callable[[], None]) -> None:
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop)
    except (NotImplementedError, AttributeError):
        # Windows: Ctrl+C arrives as KeyboardInterrupt instead
        pass


async def serve_stdio(identity: McpIdentity, handler: ToolHandler) -> None:
    """Run one dispatcher over stdin/stdout until EOF or a shutdown signal."""
    session = Session(
        server_name=identity.name,
        server_version=identity.version,
        protocol_version=identity.protocol_version,
    )
    dispatcher = Dispatcher(session, handler)
    protocol_in, protocol_out = bind_stdio()
    frame_loop = FrameLoop(dispatcher, FrameWriter(protocol_out))
    _install_signal_handlers(frame_loop.stop)
    logger.info("%s ready — listening for JSON-RPC requests", identity.name)
    await frame_loop.run(read_lines(protocol_in))


# ── Agent Broker ───────────────────────────────────────────────────────────────


async def run_agent(config: AgentConfig) -> None:
    async with httpx.AsyncClient() as http:
        api = LeedzApiClient(config.api_url, http, timeout=config.crud_timeout_seconds)
        api_key = await api.fetch_llm_api_key() or config.llm.api_key
        if not api_key:
            logger.warning("No LLM API key in database or config file; translation will fail")
        translator = RequestTranslator(config.llm, api_key=api_key)
        await serve_stdio(config.mcp, AgentBroker(translator, api))


# ── Mail Broker ────────────────────────────────────────────────────────────────


async def run_mail(config: MailConfig) -> None:
    store = TokenStore()
    app = create_app(store, config.service_version, config.allowed_origin)
    runner = await start_http_side(app, config.host, config.port)
    try:
        async with httpx.AsyncClient(timeout=None) as http:
            broker = MailBroker(store, GmailSender(http, config.send_url))
            await serve_stdio(config.mcp, broker)
    finally:
        await runner.cleanup()
        logger.info("HTTP side-channel closed")


# ── Commands ───────────────────────────────────────────────────────────────────

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to the broker's JSON config (default: beside the executable).",
)


@click.group()
def cli() -> None:
    """Leedz brokers — JSON-RPC tool servers for a host agent."""
    load_dotenv()


@cli.command()
@_config_option
def agent(config_path: Path | None) -> None:
    """Run the Agent Broker (the_leedz tool) on stdin/stdout."""
    path = config_path or default_config_path(AGENT_CONFIG_FILENAME)
    try:
        config = AgentConfig.from_file(path)
    except ConfigError as exc:
        raise click.ClickException(f"FATAL: {exc}") from exc

    configure_logging(config.log_file)
    logger.info("Configuration loaded from %s", path)
    logger.info("Log file: %s", config.log_file)
    logger.info("Database API: %s", config.api_url)
    logger.info("LLM API: %s", config.llm.base_url)
    try:
        asyncio.run(run_agent(config))
    except KeyboardInterrupt:
        logger.info("Interrupted — shutting down")


@cli.command()
@_config_option
def mail(config_path: Path | None) -> None:
    """Run the Mail Broker (gmail_send tool) plus its loopback HTTP side-channel."""
    path = config_path or default_config_path(MAIL_CONFIG_FILENAME)
    try:
        config = MailConfig.from_file(path)
    except ConfigError as exc:
        raise click.ClickException(f"FATAL: {exc}") from exc

    configure_logging(config.log_file)
    logger.info("Configuration loaded from %s", path)
    try:
        asyncio.run(run_mail(config))
    except KeyboardInterrupt:
        logger.info("Interrupted — shutting down")
    except OSError as exc:
        # Typically the loopback port is already taken
        logger.error("Mail broker failed to start: %s", exc)
        raise click.ClickException(f"FATAL: {exc}") from exc
