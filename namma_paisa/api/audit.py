"""
Audit endpoints
"""

from fastapi import APIRouter, Depends

from ..context import RequestContext, Role
from .dependencies import PaisaSystem, get_request_context, get_system, reported_as


router = APIRouter()


@router.get("/integrity")
async def verify_audit_integrity(
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Verify the audit hash chain (super admin)"""
    ctx.require_role(Role.SUPER_ADMIN)
    with reported_as("Failed to verify audit trail"):
        result = system.audit_trail.verify_integrity()
        return {
            "valid": result["valid"],
            "totalEvents": result["total_events"],
            "hashErrors": result["hash_errors"],
            "chainBreaks": result["chain_breaks"],
        }
