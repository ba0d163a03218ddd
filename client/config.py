"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import LIVE_ENDPOINT_DEFAULT, LIVE_MODEL_DEFAULT


def _optional_device(raw: str | None) -> int | str | None:
    """Parse a sounddevice device selector (index or name substring)."""
    if raw is None or raw.strip() == "":
        return None
    raw = raw.strip()
    if raw.isdigit():
        return int(raw)
    return raw


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the channel connector and audio platform.
    """

    # ------------------------------------------------------------------
    # Live channel
    # ------------------------------------------------------------------

    gemini_api_key: str | None
    live_model: str
    live_endpoint: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Audio devices (None = system default)
    # ------------------------------------------------------------------

    input_device: int | str | None
    output_device: int | str | None

    # ------------------------------------------------------------------
    # Resident profile (console host only)
    # ------------------------------------------------------------------

    resident_name: str
    resident_apartment: str
    resident_floor: str

    def resident_profile(self) -> dict[str, str]:
        return {
            "name": self.resident_name,
            "aptNumber": self.resident_apartment,
            "floor": self.resident_floor,
        }

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Missing optional values fall back to defaults; the API key is
        validated by the host before a session is started.
        """
        return AppConfig(

            gemini_api_key=os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY"),
            live_model=os.environ.get("LIVE_MODEL", LIVE_MODEL_DEFAULT),
            live_endpoint=os.environ.get("LIVE_ENDPOINT", LIVE_ENDPOINT_DEFAULT),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            input_device=_optional_device(os.environ.get("INPUT_DEVICE")),
            output_device=_optional_device(os.environ.get("OUTPUT_DEVICE")),

            resident_name=os.environ.get("RESIDENT_NAME", ""),
            resident_apartment=os.environ.get("RESIDENT_APARTMENT", ""),
            resident_floor=os.environ.get("RESIDENT_FLOOR", ""),
        )
