"""
Categorization rule models.

Rules are persisted by the rule store and evaluated by the rules engine.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, validator


class PatternKind(str, Enum):
    CONTAINS = "contains"
    EXACT = "exact"
    REGEX = "regex"


class TargetField(str, Enum):
    PAYEE = "payee"
    MEMO = "memo"
    COMBINED = "combined"  # payee and memo joined by a space


@dataclass
class Rule:
    """A user-defined categorization rule."""
    id: str
    name: str
    pattern: str
    pattern_kind: PatternKind
    target_field: TargetField
    category_id: str
    category_name: str
    payee_override: Optional[str] = None
    priority: int = 0  # lower number wins
    enabled: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'pattern': self.pattern,
            'pattern_kind': self.pattern_kind.value,
            'target_field': self.target_field.value,
            'category_id': self.category_id,
            'category_name': self.category_name,
            'payee_override': self.payee_override,
            'priority': self.priority,
            'enabled': self.enabled,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Rule':
        """Create a Rule from stored dictionary data."""
        created_at = data.get('created_at')
        updated_at = data.get('updated_at')
        return cls(
            id=str(data['id']),
            name=data.get('name', ''),
            pattern=data['pattern'],
            pattern_kind=PatternKind(data.get('pattern_kind', PatternKind.CONTAINS.value)),
            target_field=TargetField(data.get('target_field', TargetField.COMBINED.value)),
            category_id=str(data['category_id']),
            category_name=data.get('category_name', ''),
            payee_override=data.get('payee_override'),
            priority=int(data.get('priority', 0)),
            enabled=bool(data.get('enabled', True)),
            created_at=_parse_timestamp(created_at),
            updated_at=_parse_timestamp(updated_at),
        )


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(str(value))
    return datetime.now()


def create_rule_id() -> str:
    """Generate a unique rule ID."""
    return str(uuid.uuid4())


# Pydantic models for API request/response

class RuleCreateRequest(BaseModel):
    name: str = Field(..., description="Human readable rule name")
    pattern: str = Field(..., description="Pattern evaluated against the target field")
    pattern_kind: PatternKind = Field(PatternKind.CONTAINS, description="contains, exact or regex")
    target_field: TargetField = Field(TargetField.COMBINED, description="payee, memo or combined")
    category_id: str = Field(..., description="Ledger category assigned on match")
    category_name: str = Field("", description="Cached category name")
    payee_override: Optional[str] = Field(None, description="Payee to use when the rule matches")
    priority: int = Field(0, description="Lower number takes precedence")
    enabled: bool = Field(True, description="Whether the rule participates in matching")

    def to_rule(self) -> Rule:
        now = datetime.now()
        return Rule(
            id=create_rule_id(),
            name=self.name,
            pattern=self.pattern,
            pattern_kind=self.pattern_kind,
            target_field=self.target_field,
            category_id=self.category_id,
            category_name=self.category_name,
            payee_override=self.payee_override,
            priority=self.priority,
            enabled=self.enabled,
            created_at=now,
            updated_at=now,
        )


class RuleUpdateRequest(BaseModel):
    """Partial update; unset fields are left unchanged. Only payee_override accepts null."""
    name: Optional[str] = None
    pattern: Optional[str] = None
    pattern_kind: Optional[PatternKind] = None
    target_field: Optional[TargetField] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    payee_override: Optional[str] = None
    priority: Optional[int] = None
    enabled: Optional[bool] = None

    @validator('name', 'pattern', 'pattern_kind', 'target_field', 'category_id',
               'category_name', 'priority', 'enabled')
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v

    def apply_to(self, rule: Rule) -> Rule:
        changes = self.model_dump(exclude_unset=True)
        return replace(rule, updated_at=datetime.now(), **changes)


class RuleAPI(BaseModel):
    id: str
    name: str
    pattern: str
    pattern_kind: PatternKind
    target_field: TargetField
    category_id: str
    category_name: str
    payee_override: Optional[str] = None
    priority: int
    enabled: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_rule(cls, rule: Rule) -> 'RuleAPI':
        return cls(**rule.to_dict())
