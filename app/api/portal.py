# app/api/portal.py
"""
Client portal: a client sees their own non-draft invoices. Opening a sent
invoice records that it was viewed.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Response

from app.api.deps import CurrentUser, get_current_user, get_services
from app.api.invoices import pdf_response
from app.errors import NotFoundError
from app.models.invoices import PortalInvoiceListResponse, PortalInvoiceResponse
from app.services.container import InvoicingServices
from app.services.status import InvoiceStatus

router = APIRouter(prefix="/portal", tags=["portal"])


def _visible_invoice(invoice_id: int, user: CurrentUser, services: InvoicingServices) -> Dict[str, Any]:
    invoice = services.invoices.get_invoice(invoice_id)
    # hide other clients' invoices and drafts behind the same 404
    if not user.is_admin and invoice["client_id"] != user.user_id:
        raise NotFoundError("Invoice", invoice_id)
    if invoice["status"] == InvoiceStatus.DRAFT.value:
        raise NotFoundError("Invoice", invoice_id)
    return invoice


@router.get("/invoices", response_model=PortalInvoiceListResponse)
def list_my_invoices(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    services: InvoicingServices = Depends(get_services),
) -> PortalInvoiceListResponse:
    items, total = services.invoices.list_invoices(
        client_id=user.user_id,
        include_drafts=False,
        limit=limit,
        offset=offset,
    )
    return PortalInvoiceListResponse(invoices=items, total=total)


@router.get("/invoices/{invoice_id}", response_model=PortalInvoiceResponse)
def get_my_invoice(
    invoice_id: int,
    user: CurrentUser = Depends(get_current_user),
    services: InvoicingServices = Depends(get_services),
) -> PortalInvoiceResponse:
    invoice = _visible_invoice(invoice_id, user, services)
    if not user.is_admin and invoice["status"] == InvoiceStatus.SENT.value:
        invoice = services.invoices.mark_viewed(invoice_id)
    return PortalInvoiceResponse(invoice=invoice)


@router.get("/invoices/{invoice_id}/pdf")
def get_my_invoice_pdf(
    invoice_id: int,
    user: CurrentUser = Depends(get_current_user),
    services: InvoicingServices = Depends(get_services),
) -> Response:
    return pdf_response(_visible_invoice(invoice_id, user, services), services)
