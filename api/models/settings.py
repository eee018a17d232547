"""
Settings API models.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class SettingAPI(BaseModel):
    key: str
    value: Any = Field(None, description="Stored value; hidden when the key is encrypted")
    encrypted: bool = Field(False, description="Whether the value is stored as a secret")
    updated_at: Optional[str] = None

    @classmethod
    def from_entry(cls, key: str, entry: Dict[str, Any]) -> 'SettingAPI':
        return cls(
            key=key,
            value=None if entry.get('encrypted') else entry.get('value'),
            encrypted=bool(entry.get('encrypted')),
            updated_at=entry.get('updated_at')
        )


class SettingUpdateAPI(BaseModel):
    value: Any = Field(..., description="Value to store")
    encrypted: bool = Field(False, description="Mark the value as a secret")
