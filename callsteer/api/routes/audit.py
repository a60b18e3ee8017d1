"""Audit trail export route."""

from typing import Annotated, Optional

from fastapi import APIRouter, Query

from callsteer.api.dependencies import AuditDep

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("")
def export_audit(
    audit_log: AuditDep,
    target: Annotated[Optional[str], Query(description="Session or escalation id.")] = None,
):
    """Redacted export of the audit trail, with the hash-chain verdict."""
    return audit_log.export_for_review(target_entity=target)
