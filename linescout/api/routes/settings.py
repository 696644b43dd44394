"""Platform settings routes (admin only)."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from linescout.api.deps import require_admin
from linescout.api.schemas import SettingsPatch, SettingsResponse
from linescout.db.connection import get_db
from linescout.db.models import Agent
from linescout.services.settings_service import SettingsService

router = APIRouter(prefix="/settings", tags=["settings"])


def get_settings_service(db: Session = Depends(get_db)) -> SettingsService:
    """Dependency to get SettingsService instance."""
    return SettingsService(db)


@router.get("", response_model=SettingsResponse)
def get_settings(
    admin: Agent = Depends(require_admin),
    svc: SettingsService = Depends(get_settings_service),
) -> SettingsResponse:
    return SettingsResponse.model_validate(svc.load())


@router.patch("", response_model=SettingsResponse)
def update_settings(
    body: SettingsPatch,
    admin: Agent = Depends(require_admin),
    db: Session = Depends(get_db),
    svc: SettingsService = Depends(get_settings_service),
) -> SettingsResponse:
    """Apply the fields present in the body; absent fields keep their value."""
    svc.update(body.model_dump(exclude_none=True))
    db.commit()
    return SettingsResponse.model_validate(svc.load())
