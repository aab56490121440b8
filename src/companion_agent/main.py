"""Application entrypoint — start the API server or run one-off commands."""

from __future__ import annotations

import argparse
import asyncio
import sys

import uvicorn

from companion_agent.config import get_settings
from companion_agent.logger import setup_logging
from companion_agent.models import Modality
from companion_agent.orchestration.conductor import create_conductor


async def _ask(text: str, modality: str) -> str:
    conductor = create_conductor()
    result = await conductor.process_user_input(text, modality)
    await conductor.drain_background()
    return result.model_dump_json(indent=2)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="companion-agent",
        description="Multi-agent conversational companion with a live avatar session.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── serve ─────────────────────────────────────────────────
    serve_parser = sub.add_parser("serve", help="Start the API server.")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # ── ask ───────────────────────────────────────────────────
    ask_parser = sub.add_parser("ask", help="Send one message to the agents and print the result.")
    ask_parser.add_argument("text")
    ask_parser.add_argument(
        "--modality",
        default=Modality.TEXT.value,
        choices=[m.value for m in Modality],
    )

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "serve":
        uvicorn.run(
            "companion_agent.api.server:app",
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
            reload=args.reload,
        )
    elif args.command == "ask":
        print(asyncio.run(_ask(args.text, args.modality)))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
