"""
Resident identity snapshot.

Captured once when a call starts and never live-updated: a profile edit
during the call does not change what the dispatcher was told.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class ResidentContext:
    """Who is calling and from where."""
    name: str
    apartment_number: str
    floor: str

    @classmethod
    def from_profile(cls, profile: Mapping[str, Any]) -> ResidentContext:
        """
        Snapshot the identity fields of a resident profile.

        Accepts both the profile store's camelCase keys (aptNumber) and
        snake_case keys. Other profile fields are ignored.
        """
        apartment = profile.get("apartment_number", profile.get("aptNumber", ""))
        return cls(
            name=str(profile.get("name", "")).strip(),
            apartment_number=str(apartment).strip(),
            floor=str(profile.get("floor", "")).strip(),
        )

    def log_fields(self) -> dict[str, str]:
        # Location only; the resident's name stays out of logs.
        return {
            "apartment_number": self.apartment_number,
            "floor": self.floor,
        }
