"""Time source for the reservation engine.

Every comparison in the engine runs on timezone-aware UTC instants. The civil
time zone is only used to render instants for people and to interpret naive
timestamps that arrive from clients.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from backend.utils.config import Settings, get_settings


DISPLAY_FORMAT = "%d %b %Y, %I:%M %p"


class Clock:
    """Supplies the current instant and civil-time rendering."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        try:
            self._zone = ZoneInfo(self._settings.display_timezone)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(
                f"Unknown display timezone: {self._settings.display_timezone}"
            ) from exc

    @property
    def zone(self) -> ZoneInfo:
        return self._zone

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def to_instant(self, value: datetime) -> datetime:
        """Normalize to UTC; naive values are read as civil time."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=self._zone)
        return value.astimezone(timezone.utc)

    def parse_instant(self, raw: str) -> datetime:
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return self.to_instant(datetime.fromisoformat(text))

    def format_display(self, instant: Optional[datetime]) -> str:
        if instant is None:
            return ""
        return self.to_instant(instant).astimezone(self._zone).strftime(DISPLAY_FORMAT)
