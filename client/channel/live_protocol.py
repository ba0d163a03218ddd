"""
JSON message helpers for the Gemini Live bidirectional streaming API.

Client -> Server:
    {"setup": {...}}                                   once, first message
    {"realtimeInput": {"text": "..."}}                 typed text / nudge
    {"realtimeInput": {"audio": {"data": b64,
                                 "mimeType": "audio/pcm;rate=16000"}}}

Server -> Client:
    {"setupComplete": {}}                              open acknowledgement
    {"serverContent": {
        "inputTranscription":  {"text": "..."},
        "outputTranscription": {"text": "..."},
        "turnComplete": true,
        "modelTurn": {"parts": [{"inlineData": {"mimeType": "...",
                                                "data": b64}}]}}}

Usage example:

    await ws.send(encode_setup(config, model=model))
    ack = parse_payload(await ws.recv())
    if not is_setup_complete(ack):
        raise ChannelOpenError(...)

    message = parse_server_message(parse_payload(raw))
    if message is not None:
        ...
"""

from __future__ import annotations

import json
from typing import Any

from channel.base import (
    InboundMessage,
    LiveConfig,
    MediaInput,
    OutboundMessage,
    TextInput,
)


# -------------------------
# Exceptions
# -------------------------

class LiveProtocolError(Exception):
    """Base class for live protocol errors."""


class MalformedPayload(LiveProtocolError):
    """
    Raised when an inbound payload is not a JSON object.

    The payload is unsafe to interpret and must be dropped.
    """


# -------------------------
# Client -> Server
# -------------------------

def _model_resource(model: str) -> str:
    return model if model.startswith("models/") else f"models/{model}"


def build_setup(config: LiveConfig, *, model: str) -> dict[str, Any]:
    """Setup message for a new live session."""
    setup: dict[str, Any] = {
        "model": _model_resource(model),
        "generationConfig": {
            "responseModalities": [config.response_modality],
        },
        "systemInstruction": {
            "parts": [{"text": config.system_instruction_text}],
        },
    }
    if config.input_transcription_enabled:
        setup["inputAudioTranscription"] = {}
    if config.output_transcription_enabled:
        setup["outputAudioTranscription"] = {}
    return {"setup": setup}


def encode_setup(config: LiveConfig, *, model: str) -> str:
    return json.dumps(build_setup(config, model=model), ensure_ascii=False)


def build_realtime_input(message: OutboundMessage) -> dict[str, Any]:
    """realtimeInput envelope for a text turn or an audio chunk."""
    if isinstance(message, TextInput):
        return {"realtimeInput": {"text": message.text}}
    if isinstance(message, MediaInput):
        return {
            "realtimeInput": {
                "audio": {"data": message.data, "mimeType": message.mime_type},
            }
        }
    raise TypeError(f"Unsupported outbound message: {type(message).__name__}")


def encode_realtime_input(message: OutboundMessage) -> str:
    return json.dumps(build_realtime_input(message), ensure_ascii=False)


# -------------------------
# Server -> Client
# -------------------------

def parse_payload(raw: str | bytes) -> dict[str, Any]:
    """
    Decode one websocket payload (text or binary JSON).

    Raises:
        MalformedPayload: not valid JSON or not an object
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPayload(f"expected object, got {type(data).__name__}")
    return data


def is_setup_complete(data: dict[str, Any]) -> bool:
    return "setupComplete" in data


def _text_of(node: Any) -> str | None:
    if isinstance(node, dict):
        text = node.get("text")
        if isinstance(text, str):
            return text
    return None


def _first_inline_audio(model_turn: Any) -> str | None:
    if not isinstance(model_turn, dict):
        return None
    parts = model_turn.get("parts")
    if not isinstance(parts, list) or not parts:
        return None
    inline = parts[0].get("inlineData") if isinstance(parts[0], dict) else None
    if isinstance(inline, dict):
        data = inline.get("data")
        if isinstance(data, str) and data:
            return data
    return None


def parse_server_message(data: dict[str, Any]) -> InboundMessage | None:
    """
    Reduce a server message to the fields the session consumes.

    Returns None for messages without serverContent (setupComplete,
    usage metadata, goAway, tool traffic).
    """
    content = data.get("serverContent")
    if not isinstance(content, dict):
        return None

    return InboundMessage(
        input_transcription=_text_of(content.get("inputTranscription")),
        output_transcription=_text_of(content.get("outputTranscription")),
        turn_complete=bool(content.get("turnComplete", False)),
        inline_audio_data=_first_inline_audio(content.get("modelTurn")),
    )
