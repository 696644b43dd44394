"""Service for platform business settings.

Provides singleton access to the ``linescout_settings`` row with patch-style
updates, and hands out immutable PlatformSettings snapshots that callers pass
explicitly into commission and payout calculations.
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from linescout.db.models import AppSettings, utc_now_iso
from linescout.errors import ValidationError

logger = logging.getLogger(__name__)

# Fields that can be updated via PATCH
_MUTABLE_FIELDS = {"agent_percent", "min_agent_payout_minor"}


@dataclass(frozen=True)
class PlatformSettings:
    """Snapshot of the settings row.

    Attributes:
        agent_percent: Default commission percent when a quote has none.
        min_agent_payout_minor: Smallest agent withdrawal, in minor units.
    """

    agent_percent: float = 5.0
    min_agent_payout_minor: int = 10000


class SettingsService:
    """CRUD service for the AppSettings singleton."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def get_or_create(self) -> AppSettings:
        """Return the settings singleton, creating it if absent."""
        settings = self._db.query(AppSettings).order_by(AppSettings.id).first()
        if settings is None:
            settings = AppSettings()
            self._db.add(settings)
            self._db.flush()
            logger.info("Created settings singleton: %s", settings.id)
        return settings

    def load(self) -> PlatformSettings:
        """Return an immutable snapshot of the current settings."""
        row = self.get_or_create()
        return PlatformSettings(
            agent_percent=float(row.agent_percent or 0),
            min_agent_payout_minor=int(row.min_agent_payout_minor or 0),
        )

    def update(self, patch: dict[str, Any]) -> AppSettings:
        """Apply patch-style updates to settings.

        Args:
            patch: Dict of field names to new values.

        Returns:
            Updated AppSettings instance.

        Raises:
            ValidationError: If patch contains unknown fields or out-of-range values.
        """
        unknown = set(patch.keys()) - _MUTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown setting fields: {sorted(unknown)}")

        percent = patch.get("agent_percent")
        if percent is not None and not 0 <= float(percent) <= 100:
            raise ValidationError("agent_percent must be between 0 and 100")
        minimum = patch.get("min_agent_payout_minor")
        if minimum is not None and int(minimum) < 0:
            raise ValidationError("min_agent_payout_minor must not be negative")

        settings = self.get_or_create()
        for key, value in patch.items():
            setattr(settings, key, value)
        settings.updated_at = utc_now_iso()
        self._db.flush()
        logger.info("Settings updated: %s", sorted(patch))
        return settings
