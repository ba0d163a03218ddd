"""
Websocket live channel for the Gemini Live API.

Core model:
- One websocket per session. Opened by open(), which resolves only after
  the server acknowledged the setup message (setupComplete).
- Outbound: send() appends to an unbounded asyncio queue drained by a
  single writer task, so messages leave in call order and the caller never
  waits on the network. There is no backpressure.
- Inbound: a single receive task parses server messages and feeds one
  inbound queue; events() drains it in arrival order.
- Termination is reported exactly once as ChannelClosed. Transport failures
  are reported as ChannelFault first.

Design constraints:
- Adapter must not know about session state, transcripts or playback.
- Adapter never retries or reconnects.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from channel.base import (
    ChannelClosed,
    ChannelClosedError,
    ChannelEvent,
    ChannelFault,
    ChannelOpenError,
    LiveChannel,
    LiveConfig,
    OutboundMessage,
)
from channel.live_protocol import (
    MalformedPayload,
    encode_realtime_input,
    encode_setup,
    is_setup_complete,
    parse_payload,
    parse_server_message,
)
from constants import (
    CLEAN_CLOSE_CODES,
    LIVE_ENDPOINT_DEFAULT,
    LIVE_MAX_MESSAGE_BYTES,
    LIVE_MODEL_DEFAULT,
    LOG_PAYLOAD_PREVIEW_CHARS,
)
from observability.logger import log_event


class GeminiLiveChannel(LiveChannel):
    """
    Open, acknowledged Gemini Live websocket.

    Construct with open(); the constructor only wires background tasks
    around an already-acknowledged connection.
    """

    def __init__(self, ws: ClientConnection, *, session_id: str | None = None) -> None:
        self._ws = ws
        self._session_id = session_id

        self._outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue()
        self._inbound: asyncio.Queue[ChannelEvent] = asyncio.Queue()

        self._close_requested = False
        self._terminated = False

        self._writer_task: asyncio.Task[None] = asyncio.create_task(self._write_loop())
        self._recv_task: asyncio.Task[None] = asyncio.create_task(self._recv_loop())

    # -------------------------------------------------------------------------
    # Open
    # -------------------------------------------------------------------------

    @classmethod
    async def open(
        cls,
        config: LiveConfig,
        *,
        api_key: str,
        model: str = LIVE_MODEL_DEFAULT,
        endpoint: str = LIVE_ENDPOINT_DEFAULT,
        session_id: str | None = None,
    ) -> GeminiLiveChannel:
        """
        Connect, send setup, and wait for setupComplete.

        Raises:
            ChannelOpenError: connect failed, setup rejected or not acknowledged
        """
        try:
            ws = await ws_connect(
                endpoint,
                additional_headers={"x-goog-api-key": api_key},
                max_size=LIVE_MAX_MESSAGE_BYTES,
            )
        except (OSError, WebSocketException) as e:
            raise ChannelOpenError(f"live_connect_failed: {e!r}") from e

        try:
            await ws.send(encode_setup(config, model=model))
            ack = parse_payload(await ws.recv())
            if not is_setup_complete(ack):
                raise ChannelOpenError(
                    f"live_setup_not_acknowledged: {str(ack)[:LOG_PAYLOAD_PREVIEW_CHARS]}"
                )
        except ChannelOpenError:
            await ws.close()
            raise
        except (OSError, WebSocketException, MalformedPayload) as e:
            await ws.close()
            raise ChannelOpenError(f"live_setup_failed: {e!r}") from e
        except asyncio.CancelledError:
            # Open aborted by session teardown; do not leak the socket.
            await ws.close()
            raise

        return cls(ws, session_id=session_id)

    # -------------------------------------------------------------------------
    # LiveChannel API
    # -------------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._close_requested or self._terminated

    def send(self, message: OutboundMessage) -> None:
        if self.closed:
            raise ChannelClosedError("live channel is closed")
        self._outbound.put_nowait(message)

    async def events(self) -> AsyncIterator[ChannelEvent]:
        while True:
            event = await self._inbound.get()
            yield event
            if isinstance(event, ChannelClosed):
                return

    async def close(self) -> None:
        if self._close_requested:
            raise ChannelClosedError("live channel already closed")
        self._close_requested = True

        self._writer_task.cancel()
        try:
            await self._ws.close()
        except (OSError, WebSocketException) as e:
            log_event({
                "event_type": "live_close_failed",
                "session_id": self._session_id,
                "error": repr(e),
            })
        # The receive loop observes the close and emits ChannelClosed.

    # -------------------------------------------------------------------------
    # Background loops
    # -------------------------------------------------------------------------

    async def _write_loop(self) -> None:
        while True:
            message = await self._outbound.get()
            try:
                await self._ws.send(encode_realtime_input(message))
            except ConnectionClosed:
                # Receive loop reports the close.
                return
            except (OSError, WebSocketException) as e:
                self._inbound.put_nowait(ChannelFault(reason=f"live_send_failed: {e!r}"))
                return

    async def _recv_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    data = parse_payload(raw)
                except MalformedPayload as e:
                    log_event({
                        "event_type": "inbound_payload_malformed",
                        "session_id": self._session_id,
                        "error": str(e),
                    })
                    continue

                message = parse_server_message(data)
                if message is not None:
                    self._inbound.put_nowait(message)
        except asyncio.CancelledError:
            self._finish()
            raise
        except ConnectionClosed:
            pass
        except (OSError, WebSocketException) as e:
            self._inbound.put_nowait(ChannelFault(reason=f"live_recv_failed: {e!r}"))

        self._finish()

    def _finish(self) -> None:
        """Emit the single terminal ChannelClosed."""
        if self._terminated:
            return
        self._terminated = True
        self._writer_task.cancel()

        code = self._ws.close_code
        reason = self._ws.close_reason or ""
        clean = self._close_requested or code in CLEAN_CLOSE_CODES

        log_event({
            "event_type": "live_channel_closed",
            "session_id": self._session_id,
            "code": code,
            "reason": reason,
            "clean": clean,
        })
        self._inbound.put_nowait(ChannelClosed(reason=reason, code=code, clean=clean))
