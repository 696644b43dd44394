"""Tests for SettingsService."""

import pytest
from sqlalchemy.orm import Session

from linescout.db.models import AppSettings
from linescout.errors import ValidationError
from linescout.services.settings_service import PlatformSettings, SettingsService


class TestSettingsService:
    def test_defaults_created_on_first_load(self, test_db: Session) -> None:
        assert SettingsService(test_db).load() == PlatformSettings(5.0, 10000)
        assert test_db.query(AppSettings).count() == 1

    def test_singleton(self, test_db: Session) -> None:
        svc = SettingsService(test_db)
        assert svc.get_or_create().id == svc.get_or_create().id

    def test_patch_update(self, test_db: Session) -> None:
        svc = SettingsService(test_db)
        svc.update({"agent_percent": 7.5})
        test_db.commit()
        assert svc.load() == PlatformSettings(agent_percent=7.5, min_agent_payout_minor=10000)

    def test_unknown_field_rejected(self, test_db: Session) -> None:
        with pytest.raises(ValidationError, match="Unknown setting fields"):
            SettingsService(test_db).update({"currency": "USD"})

    @pytest.mark.parametrize(
        "patch",
        [{"agent_percent": -1}, {"agent_percent": 101}, {"min_agent_payout_minor": -5}],
    )
    def test_out_of_range_rejected(self, test_db: Session, patch: dict) -> None:
        with pytest.raises(ValidationError):
            SettingsService(test_db).update(patch)
