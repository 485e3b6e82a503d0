"""In-memory recipient directory loaded from YAML fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from fieldalert.core.errors import RecipientNotFoundError
from fieldalert.core.types import RecipientRole
from fieldalert.directory.models import ChannelPreference, RecipientProfile

_DEFAULT_FIXTURES_PATH = Path(__file__).resolve().parents[3] / "config" / "recipients.yml"


class InMemoryRecipientDirectory:
    """Recipient directory backed by a dict, seeded from a YAML fixture file.

    The fixture format is::

        recipients:
          - id: staff-001
            name: Maria Lopez
            role: staff
            channels:
              push: {enabled: true, addresses: ["ExponentPushToken[...]"]}
              realtime: {enabled: true, addresses: ["staff-001"]}
            enabled_event_types: []
            urgent_only: false
    """

    def __init__(self, fixtures_path: str | Path | None = None, *, load_fixtures: bool = True) -> None:
        self._profiles: dict[str, RecipientProfile] = {}
        if load_fixtures:
            self._load_fixtures(Path(fixtures_path) if fixtures_path else _DEFAULT_FIXTURES_PATH)

    def _load_fixtures(self, path: Path) -> None:
        if not path.exists():
            return
        with open(path) as fh:
            data = yaml.safe_load(fh) or {}
        for entry in data.get("recipients", []):
            self.add(self._profile_from_fixture(entry))

    @staticmethod
    def _profile_from_fixture(entry: dict[str, Any]) -> RecipientProfile:
        channels = {
            name: ChannelPreference(**(pref or {}))
            for name, pref in (entry.get("channels") or {}).items()
        }
        return RecipientProfile(
            recipient_id=str(entry["id"]),
            name=entry.get("name", ""),
            role=RecipientRole(entry.get("role", "staff")),
            channels=channels,
            enabled_event_types=entry.get("enabled_event_types") or [],
            urgent_only=bool(entry.get("urgent_only", False)),
        )

    def add(self, profile: RecipientProfile) -> RecipientProfile:
        self._profiles[profile.recipient_id] = profile
        return profile

    async def get_profile(self, recipient_id: str) -> RecipientProfile:
        profile = self._profiles.get(recipient_id)
        if profile is None:
            raise RecipientNotFoundError(recipient_id)
        return profile

    async def list_recipients(
        self, roles: list[RecipientRole] | None = None
    ) -> list[RecipientProfile]:
        if not roles:
            return list(self._profiles.values())
        return [p for p in self._profiles.values() if p.role in roles]

    @property
    def count(self) -> int:
        return len(self._profiles)
