"""Settings API — manage stored backup configuration overrides."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.setting import Setting
from ..services.backup_settings import default_values, validate_setting

router = APIRouter(prefix="/settings", tags=["settings"])


class SettingUpdate(BaseModel):
    value: str


@router.get("")
def list_settings(db: Session = Depends(get_db)):
    """Get all settings with defaults applied."""
    stored = {s.key: s.value for s in db.query(Setting).all()}
    result = {}
    for key, default in default_values().items():
        result[key] = stored.get(key, default)
    # Include any extra stored settings
    for key, val in stored.items():
        if key not in result:
            result[key] = val
    return result


@router.get("/{key}")
def get_setting(key: str, db: Session = Depends(get_db)):
    setting = db.get(Setting, key)
    return {"key": key, "value": setting.value if setting else default_values().get(key, "")}


@router.put("/{key}")
def update_setting(key: str, body: SettingUpdate, db: Session = Depends(get_db)):
    error = validate_setting(key, body.value)
    if error:
        return JSONResponse({"success": False, "error": error}, status_code=400)
    setting = db.get(Setting, key)
    if setting:
        setting.value = body.value
    else:
        setting = Setting(key=key, value=body.value)
        db.add(setting)
    db.commit()
    return {"key": key, "value": body.value}
