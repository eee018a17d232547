"""
Categorization rule API endpoints.
"""

from typing import List
from fastapi import APIRouter, status

from api.models.rule import RuleAPI, RuleCreateRequest, RuleUpdateRequest
from api.services.sync_orchestrator import get_orchestrator


router = APIRouter(prefix="/rules", tags=["rules"])


@router.get("", response_model=List[RuleAPI])
async def list_rules():
    """List rules in the order they were created."""
    return [RuleAPI.from_rule(rule) for rule in get_orchestrator().rule_store.list()]


@router.post("", response_model=RuleAPI, status_code=status.HTTP_201_CREATED)
async def create_rule(request: RuleCreateRequest):
    """Create a rule. Responds 422 with the issue list if the rule is invalid."""
    rule = get_orchestrator().rule_store.create(request.to_rule())
    return RuleAPI.from_rule(rule)


@router.get("/{rule_id}", response_model=RuleAPI)
async def get_rule(rule_id: str):
    return RuleAPI.from_rule(get_orchestrator().rule_store.get(rule_id))


@router.put("/{rule_id}", response_model=RuleAPI)
async def update_rule(rule_id: str, request: RuleUpdateRequest):
    store = get_orchestrator().rule_store
    rule = store.update(request.apply_to(store.get(rule_id)))
    return RuleAPI.from_rule(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(rule_id: str):
    get_orchestrator().rule_store.delete(rule_id)
