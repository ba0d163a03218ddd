"""
Console host for a distress call.

Responsibilities:
- Load configuration (.env + environment)
- Wire the sounddevice platform, Gemini Live connector and controller
- Forward typed lines as text; `/end`, EOF or Ctrl-C ends the call
- Print drained UI updates

Usage:
    GEMINI_API_KEY=... RESIDENT_NAME=Ana RESIDENT_APARTMENT=4B \
    RESIDENT_FLOOR=9 python client/main.py
"""

from __future__ import annotations

import asyncio
import functools
import sys
import threading
from typing import Any

from dotenv import load_dotenv

from audio.sounddevice_platform import SoundDevicePlatform
from channel.gemini_live import GeminiLiveChannel
from config import AppConfig
from observability import logger
from session.controller import SessionController
from session.state import SessionState


END_COMMAND = "/end"


# ------------------------------------------------------------------
# Output
# ------------------------------------------------------------------

def render_update(update: dict[str, Any]) -> str | None:
    """Format one UI update for the console; None means print nothing."""
    kind = update.get("type")
    if kind == "STATE":
        line = f"[{update['state']}]"
        if update.get("error_message"):
            line += f" {update['error_message']}"
        return line
    if kind == "TRANSCRIPT_ENTRY":
        return f"{update['speaker']}: {update['text']}"
    # Partials are too chatty for a line-oriented console
    return None


def _emit(line: str) -> None:
    sys.stderr.write(line + "\n")
    sys.stderr.flush()


def _print_pending(controller: SessionController) -> None:
    for update in controller.session.drain_updates():
        line = render_update(update)
        if line is not None:
            _emit(line)


async def _print_updates(controller: SessionController, call_over: asyncio.Event) -> None:
    while True:
        for update in await controller.session.wait_for_updates():
            line = render_update(update)
            if line is not None:
                _emit(line)
            if update.get("type") == "STATE" and update["state"] in (
                SessionState.IDLE.value,
                SessionState.ERROR.value,
            ):
                call_over.set()


# ------------------------------------------------------------------
# Input
# ------------------------------------------------------------------

def _start_stdin_reader(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue[str | None]) -> None:
    """Read stdin on a daemon thread; None marks EOF."""

    def _reader() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(lines.put_nowait, line.rstrip("\n"))
        loop.call_soon_threadsafe(lines.put_nowait, None)

    threading.Thread(target=_reader, name="stdin-reader", daemon=True).start()


async def _forward_input(controller: SessionController, lines: asyncio.Queue[str | None]) -> None:
    while True:
        line = await lines.get()
        if line is None or line.strip() == END_COMMAND:
            return
        controller.send_text(line)


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

async def run(config: AppConfig) -> int:
    platform = SoundDevicePlatform(
        input_device=config.input_device,
        output_device=config.output_device,
    )
    connector = functools.partial(
        GeminiLiveChannel.open,
        api_key=config.gemini_api_key,
        model=config.live_model,
        endpoint=config.live_endpoint,
    )

    async with SessionController(platform=platform, connector=connector) as controller:
        call_over = asyncio.Event()
        printer = asyncio.create_task(_print_updates(controller, call_over))

        state = await controller.start(config.resident_profile())
        if state is not SessionState.CONNECTED:
            printer.cancel()
            _print_pending(controller)
            return 1

        _emit(f"Connected. Type to message the dispatcher, {END_COMMAND} to hang up.")
        lines: asyncio.Queue[str | None] = asyncio.Queue()
        _start_stdin_reader(asyncio.get_running_loop(), lines)

        forward = asyncio.create_task(_forward_input(controller, lines))
        over = asyncio.create_task(call_over.wait())
        await asyncio.wait({forward, over}, return_when=asyncio.FIRST_COMPLETED)
        forward.cancel()
        over.cancel()

        await controller.end()
        printer.cancel()
        _print_pending(controller)
    return 0


def main() -> int:
    load_dotenv()
    config = AppConfig.load_from_env()
    logger.set_enabled(config.enable_json_logs)

    if not config.gemini_api_key:
        _emit("GEMINI_API_KEY environment variable not set")
        return 2

    try:
        return asyncio.run(run(config))
    except KeyboardInterrupt:
        # asyncio.run already cancelled the call; the controller context
        # manager released every resource on the way out.
        return 130


if __name__ == "__main__":
    sys.exit(main())
