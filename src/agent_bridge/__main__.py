"""CLI entrypoint for agent-bridge."""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from functools import partial
from importlib import metadata
import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI
import uvicorn

from .agent import ChatAgent
from .chat_service import StreamChatService
from .completions import FragmentSource, build_fragment_source
from .config import load_config
from .exceptions import MissingCredentialError
from .logging_utils import configure_logging
from .search import WebSearch
from .webhook import create_app

LOGGER = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-bridge",
        description="agent-bridge - AI writing assistant for a Stream Chat channel",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a TOML config file (default: ~/.config/agent-bridge/config.toml)",
    )
    parser.add_argument("--host", default=None, help="Bind address override")
    parser.add_argument("--port", type=int, default=None, help="Port override")
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    return parser


def _missing_stream_settings(stream: dict[str, Any]) -> list[str]:
    labels = {
        "api_key": "STREAM_API_KEY",
        "api_secret": "STREAM_API_SECRET",
        "channel_id": "AGENT_BRIDGE_CHANNEL_ID",
    }
    return [label for key, label in labels.items() if not stream.get(key)]


def build_app(config: dict[str, Any], source: FragmentSource) -> FastAPI:
    """Wire the Stream Chat adapter, web search, agent and webhook app.

    Called by uvicorn inside its event loop, which the Stream Chat client
    needs at construction time.
    """
    stream = config["stream"]
    service = StreamChatService.from_credentials(
        stream["api_key"],
        stream["api_secret"],
        channel_type=stream["channel_type"],
        channel_id=stream["channel_id"],
        user_id=stream["user_id"],
    )
    web_search = WebSearch(**config["search"])
    agent = ChatAgent(
        service,
        source=source,
        web_search=web_search,
        history_window=config["agent"]["history_window"],
        flush_interval_seconds=config["agent"]["flush_interval_seconds"],
    )
    return create_app(agent, service, verify_signatures=stream["verify_webhooks"])


def main(argv: Sequence[str] | None = None) -> None:
    """Load configuration, handle CLI flags and serve the webhook app."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("agent-bridge")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"agent-bridge {version}")
        return

    load_dotenv()
    config = load_config(args.config)
    configure_logging(config["logging"])

    missing = _missing_stream_settings(config["stream"])
    if missing:
        parser.exit(
            status=2,
            message=f"agent-bridge: missing Stream Chat settings: {', '.join(missing)}\n",
        )

    try:
        source = build_fragment_source(**config["model"])
    except MissingCredentialError as exc:
        parser.exit(status=2, message=f"agent-bridge: {exc}\n")

    host = args.host or config["server"]["host"]
    port = args.port or config["server"]["port"]
    LOGGER.info(
        "server.start", extra={"event": "server.start", "host": host, "port": port}
    )
    uvicorn.run(
        partial(build_app, config, source),
        factory=True,
        host=host,
        port=port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
