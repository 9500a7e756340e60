"""
EMI calculator endpoint
"""

from fastapi import APIRouter, Depends

from ..calculator import auto_calculate
from ..context import RequestContext
from ..currency import Currency, Money
from ..errors import ValidationError
from .dependencies import get_request_context, reported_as
from .schemas import CalculatorRequest, quote_json


router = APIRouter()


@router.post("/emi")
async def calculate(
    request: CalculatorRequest,
    ctx: RequestContext = Depends(get_request_context)
):
    """Derive the EMI from the tenure, or the tenure from the EMI"""
    with reported_as("Failed to calculate EMI"):
        try:
            currency = Currency.from_code(request.currency)
        except ValueError as e:
            raise ValidationError(str(e))
        if request.tenure is None and request.emi_amount is None:
            raise ValidationError("Either tenure or EMI amount is required")

        principal = Money(request.principal_amount, currency)
        emi = Money(request.emi_amount, currency) if request.emi_amount is not None else None
        quote = auto_calculate(
            principal, request.interest_rate, request.emi_frequency,
            tenure=request.tenure, emi_amount=emi
        )
        return quote_json(quote)
