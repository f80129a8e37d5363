"""Command line front end: send one prompt to a configured bot."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import mimetypes
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from llmbridge.bots.factory import BotFactory, create_bot_instance
from llmbridge.bots.thinking import thinking_diff
from llmbridge.core.config import (
    ConfigFileEmptyError,
    ConfigFileNotFoundError,
    load_user_config,
)
from llmbridge.core.error_handling import log_chat_error
from llmbridge.core.exceptions import ChatError
from llmbridge.core.models import CancellationToken, ImageInput, MessageParams
from llmbridge.services.image import client as image_client
from llmbridge.services.llm.providers import base as provider_base

if TYPE_CHECKING:
    from collections.abc import Sequence

    from llmbridge.bots.base import AbstractBot

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llmbridge",
        description="Stream one answer from a bot defined in the config file.",
    )
    parser.add_argument("prompt", nargs="+", help="Prompt text")
    parser.add_argument("--bot", type=int, default=0, help="Bot index (default: 0)")
    parser.add_argument("--config", help="Config file (default: $LLMBRIDGE_CONFIG or config.yaml)")
    parser.add_argument(
        "--image",
        action="append",
        default=[],
        type=Path,
        help="Attach an image file; may be repeated",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def load_image(path: Path) -> ImageInput:
    mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
    return ImageInput(data=path.read_bytes(), mime_type=mime_type, filename=path.name)


async def stream_answer(
    bot: AbstractBot,
    params: MessageParams,
    *,
    stdout: TextIO,
    stderr: TextIO,
) -> str:
    """Write the answer to ``stdout`` and thinking to ``stderr`` as it streams.

    Answer text only grows on the terminal: when an update no longer extends
    what was printed, the new text is printed in full on a fresh line.

    Returns:
        The final answer text.

    """
    printed: str | None = None
    text = ""
    async for payload in bot.send_message(params):
        if payload.thinking:
            stderr.write(payload.thinking)
            stderr.flush()
        text = payload.text
        if not text:
            continue
        delta = thinking_diff(printed, text)
        if printed and not text.startswith(printed):
            stdout.write("\n")
        stdout.write(delta)
        stdout.flush()
        printed = text
    stdout.write("\n")
    stdout.flush()
    return text


async def shutdown() -> None:
    """Close the shared HTTP clients; safe to call more than once."""
    await provider_base.LLM_HTTP_CLIENT.aclose()
    await image_client.IMAGE_HTTP_CLIENT.aclose()


async def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s: %(message)s",
    )

    factory = BotFactory(lambda: load_user_config(args.config))
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, token.cancel)

    try:
        images = [load_image(path) for path in args.image]
        bot = create_bot_instance(args.bot, factory=factory)
        await bot.wait_until_ready()
        await stream_answer(
            bot,
            MessageParams(prompt=" ".join(args.prompt), images=images, signal=token),
            stdout=sys.stdout,
            stderr=sys.stderr,
        )
    except (ConfigFileNotFoundError, ConfigFileEmptyError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except ChatError as exc:
        log_chat_error(logger=logger, message="Request failed", error=exc)
        print(f"error: {exc.message}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        await shutdown()

    if token.cancelled:
        print("cancelled", file=sys.stderr)
        return EXIT_CANCELLED
    return EXIT_OK
