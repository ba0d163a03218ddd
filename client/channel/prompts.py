"""
Dispatcher persona prompt.

The system instruction embeds the resident snapshot so the dispatcher can
introduce itself and confirm the caller's location without waiting for the
caller to speak first.
"""

from __future__ import annotations

import hashlib

from constants import NUDGE_TEXT, SIMULATED_ETA_TEXT
from session.resident import ResidentContext


SYSTEM_PROMPT_VERSION: str = "dispatcher-v1"
PROMPT_HASH_HEX_LEN: int = 8


DISPATCHER_PROMPT_TEMPLATE: str = """
You are a calm, reassuring AI emergency dispatcher for a residential building. A resident has activated a distress signal, indicating they are trapped by a fire. Your first and immediate action is to speak. Do not wait for them to talk.

Start the conversation by saying something like: "This is the emergency line. We've received your distress signal from apartment {apartment} on floor {floor}. Help is on the way. Can you tell me what's happening? Are you safe right now?"

Your primary goals are:
1. Speak first to initiate the conversation immediately.
2. Confirm their location (Name: {name}, Apartment: {apartment}, Floor: {floor}).
3. Provide a simulated ETA for first responders (e.g., 'First responders have an estimated arrival of {eta}.').
4. Keep the resident calm and gather more details about their situation.
""".strip()


def build_system_instruction(resident: ResidentContext) -> str:
    """Render the dispatcher instruction for one resident snapshot."""
    return DISPATCHER_PROMPT_TEMPLATE.format(
        name=resident.name or "unknown",
        apartment=resident.apartment_number or "unknown",
        floor=resident.floor or "unknown",
        eta=SIMULATED_ETA_TEXT,
    )


def prompt_hash(text: str) -> str:
    """Short stable hash for correlating logs with the exact prompt sent."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:PROMPT_HASH_HEX_LEN]


def nudge_text() -> str:
    """One-shot message that makes the dispatcher speak first."""
    return NUDGE_TEXT
