"""
hostwatch entry point.

This file handles startup concerns (arg-parsing, logging) and launches either the HTTP API or a
single question from the command line.
"""

import argparse
import asyncio
import logging
import sys

from hostwatch.api.app import run_api
from hostwatch.config import settings
from hostwatch.core.schema import AskResult
from hostwatch.runtime import Hostwatch

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


async def _ask_once(question: str) -> AskResult:
    runtime = Hostwatch.from_settings(settings)
    await runtime.start()
    try:
        return await runtime.ask(question)
    finally:
        await runtime.stop()


def _print_result(result: AskResult) -> None:
    print(result.response)
    if result.tool_calls:
        print("\n--- tools used ---")
        for call in result.tool_calls:
            preview = call.output_preview.replace("\n", " ")
            print(f"{call.name} {call.input} -> {preview[:80]}")
    if result.usage.input_tokens or result.usage.output_tokens:
        print(f"tokens: in={result.usage.input_tokens} out={result.usage.output_tokens}")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for hostwatch.

    Sets up the command-line interface, initializes logging, and either starts the API server or
    answers one question.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Server monitoring assistant")
    parser.add_argument(
        "--mode",
        choices=["api", "ask"],
        type=str.lower,
        default="api",
        help="Launch the REST API, or answer a single question (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument("question", nargs="*", help="Question to ask in 'ask' mode")
    args = parser.parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting hostwatch [%s mode]", args.mode)

    if args.mode == "api":
        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
        return

    question = " ".join(args.question).strip()
    if not question:
        parser.error("ask mode needs a question")
    _print_result(asyncio.run(_ask_once(question)))


if __name__ == "__main__":
    main()
