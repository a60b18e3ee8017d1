"""Conversation flow template routes."""

from fastapi import APIRouter

from callsteer.api.dependencies import FlowsDep
from callsteer.api.schemas import FlowListResponse

router = APIRouter(prefix="/flows", tags=["flows"])


@router.get("", response_model=FlowListResponse)
def list_flows(flows: FlowsDep):
    return FlowListResponse(flows=flows.list_templates())
