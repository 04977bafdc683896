# app/api/terms.py

from fastapi import APIRouter, Depends

from app.api.deps import get_services, require_admin
from app.models.common import SuccessResponse
from app.models.terms import (
    GenerateFromPlanIn,
    GeneratedInvoicesResponse,
    PaymentPlanCreate,
    PaymentPlanListResponse,
    PaymentPlanResponse,
    PaymentTermsCreate,
    PaymentTermsListResponse,
    PaymentTermsResponse,
)
from app.services.container import InvoicingServices

router = APIRouter(prefix="/invoices", tags=["payment terms"], dependencies=[Depends(require_admin)])


@router.get("/payment-terms", response_model=PaymentTermsListResponse)
def list_payment_terms(services: InvoicingServices = Depends(get_services)) -> PaymentTermsListResponse:
    return PaymentTermsListResponse(terms=services.terms.list_payment_terms())


@router.post("/payment-terms", response_model=PaymentTermsResponse, status_code=201)
def create_payment_terms(
    payload: PaymentTermsCreate,
    services: InvoicingServices = Depends(get_services),
) -> PaymentTermsResponse:
    return PaymentTermsResponse(terms=services.terms.create_payment_terms(**payload.model_dump()))


@router.get("/payment-plans", response_model=PaymentPlanListResponse)
def list_payment_plans(services: InvoicingServices = Depends(get_services)) -> PaymentPlanListResponse:
    return PaymentPlanListResponse(plans=services.terms.list_plans())


@router.post("/payment-plans", response_model=PaymentPlanResponse, status_code=201)
def create_payment_plan(
    payload: PaymentPlanCreate,
    services: InvoicingServices = Depends(get_services),
) -> PaymentPlanResponse:
    plan = services.terms.create_plan(
        name=payload.name,
        payments=[p.model_dump(exclude_none=True) for p in payload.payments],
        description=payload.description,
        is_default=payload.is_default,
    )
    return PaymentPlanResponse(plan=plan)


@router.delete("/payment-plans/{template_id}", response_model=SuccessResponse)
def delete_payment_plan(template_id: int, services: InvoicingServices = Depends(get_services)) -> SuccessResponse:
    services.terms.delete_plan(template_id)
    return SuccessResponse(message="Payment plan deleted")


@router.post("/generate-from-plan", response_model=GeneratedInvoicesResponse, status_code=201)
def generate_from_plan(
    payload: GenerateFromPlanIn,
    services: InvoicingServices = Depends(get_services),
) -> GeneratedInvoicesResponse:
    invoices = services.terms.generate_from_plan(**payload.model_dump())
    return GeneratedInvoicesResponse(message=f"Generated {len(invoices)} invoices", invoices=invoices)
