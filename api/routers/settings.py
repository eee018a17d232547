"""
Settings API endpoints.

Settings are a flat key/value map. Values of keys flagged as encrypted are
never returned.
"""

from typing import List
from fastapi import APIRouter, HTTPException, status

from api.models.settings import SettingAPI, SettingUpdateAPI
from api.services.sync_orchestrator import DAYS_TO_FETCH_SETTING, get_orchestrator
from api.services.validator import ValidationIssue, raise_if_invalid, validate_days_to_fetch
from core.store import SettingsStore


router = APIRouter(prefix="/settings", tags=["settings"])


def _get_store() -> SettingsStore:
    store = get_orchestrator().settings_store
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Settings store is not configured"
        )
    return store


def _validate_setting(key: str, value) -> None:
    if key == DAYS_TO_FETCH_SETTING:
        try:
            days = int(value)
        except (TypeError, ValueError):
            raise_if_invalid([ValidationIssue(key, 'invalid_value', "Days to fetch must be an integer")])
        raise_if_invalid(validate_days_to_fetch(days))


@router.get("", response_model=List[SettingAPI])
async def list_settings():
    return [SettingAPI.from_entry(key, entry) for key, entry in _get_store().items().items()]


@router.get("/{key}", response_model=SettingAPI)
async def get_setting(key: str):
    entry = _get_store().get_entry(key)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Setting not found: {key}")
    return SettingAPI.from_entry(key, entry)


@router.put("/{key}", response_model=SettingAPI)
async def put_setting(key: str, request: SettingUpdateAPI):
    _validate_setting(key, request.value)
    store = _get_store()
    store.set(key, request.value, encrypted=request.encrypted)
    return SettingAPI.from_entry(key, store.get_entry(key))


@router.delete("/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_setting(key: str):
    if not _get_store().delete(key):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Setting not found: {key}")
