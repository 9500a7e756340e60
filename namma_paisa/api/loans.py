"""
Loan endpoints
"""

from fastapi import APIRouter, Depends, Query, status

from ..config import get_config
from ..context import RequestContext
from .dependencies import PaisaSystem, get_request_context, get_system, reported_as
from .schemas import (
    ClosureRequestModel, LoanCreateRequest, LoanUpdateRequest, PaymentRequestModel,
    installment_json, loan_json
)


router = APIRouter()


def _full_loan(system: PaisaSystem, loan) -> dict:
    manager = system.loan_manager
    return loan_json(loan, manager.get_installments(loan.id), manager.get_gold_items(loan.id))


@router.get("")
async def list_loans(
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """List the caller's loans, each with its next three unpaid EMIs"""
    with reported_as("Failed to fetch loans"):
        manager = system.loan_manager
        return [
            loan_json(loan, manager.next_installments(loan.id))
            for loan in manager.list_loans(ctx)
        ]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: LoanCreateRequest,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Create a loan and generate its EMI schedule"""
    with reported_as("Failed to create loan"):
        loan = system.loan_manager.create_loan(ctx, request.to_create())
        return _full_loan(system, loan)


@router.get("/upcoming")
async def upcoming_emis(
    limit: int = Query(0, ge=0, description="0 uses the configured default"),
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Earliest unpaid EMIs across the caller's active loans"""
    with reported_as("Failed to fetch upcoming EMIs"):
        pairs = system.loan_manager.upcoming_installments(ctx, limit or get_config().upcoming_limit)
        return [
            {
                **installment_json(emi),
                "loan": {
                    "id": loan.id,
                    "institution": loan.institution,
                    "loanType": loan.loan_type.value,
                },
            }
            for loan, emi in pairs
        ]


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Get a loan with all its EMIs and gold items"""
    with reported_as("Failed to fetch loan"):
        loan = system.loan_manager.get_loan(ctx, loan_id)
        return _full_loan(system, loan)


@router.put("/{loan_id}")
async def update_loan(
    loan_id: str,
    request: LoanUpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Replace a loan's fields, regenerating unpaid EMIs when the schedule changed"""
    with reported_as("Failed to update loan"):
        loan = system.loan_manager.update_loan(ctx, loan_id, request.to_update())
        return _full_loan(system, loan)


@router.delete("/{loan_id}")
async def delete_loan(
    loan_id: str,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    with reported_as("Failed to delete loan"):
        system.loan_manager.delete_loan(ctx, loan_id)
        return {"message": "Loan deleted successfully"}


@router.post("/{loan_id}/close")
async def close_loan(
    loan_id: str,
    request: ClosureRequestModel,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Close a loan early, settling every unpaid EMI"""
    with reported_as("Failed to close loan"):
        loan = system.loan_manager.close_loan(ctx, loan_id, request.to_closure())
        return {
            "loan": loan_json(loan),
            "message": "Loan closed successfully!",
        }


@router.post("/{loan_id}/emis/{emi_id}/pay")
async def pay_emi(
    loan_id: str,
    emi_id: str,
    request: PaymentRequestModel,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Record the payment of one EMI"""
    with reported_as("Failed to record payment"):
        emi, loan = system.loan_manager.record_payment(ctx, loan_id, emi_id, request.to_payment())
        return {
            "emi": installment_json(emi),
            "loan": loan_json(loan),
            "message": (
                "Payment recorded and loan closed successfully!"
                if loan.is_closed else "Payment recorded successfully!"
            ),
        }


@router.patch("/{loan_id}/emis/{emi_id}/edit")
async def edit_emi_payment(
    loan_id: str,
    emi_id: str,
    request: PaymentRequestModel,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Edit the payment details of a paid EMI"""
    with reported_as("Failed to update payment"):
        emi, loan = system.loan_manager.edit_payment(ctx, loan_id, emi_id, request.to_edit())
        return {
            "emi": installment_json(emi),
            "loan": loan_json(loan),
            "message": "Payment updated successfully",
        }


@router.delete("/{loan_id}/emis/{emi_id}")
async def delete_emi_payment(
    loan_id: str,
    emi_id: str,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Reverse a recorded payment, marking the EMI unpaid"""
    with reported_as("Failed to delete payment"):
        emi, loan = system.loan_manager.reverse_payment(ctx, loan_id, emi_id)
        return {
            "emi": installment_json(emi),
            "loan": loan_json(loan),
            "message": "Payment deleted successfully. EMI marked as unpaid.",
        }
