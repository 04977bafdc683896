# app/api/receipts.py
"""
Payment receipts. Admins see every receipt; a client sees only receipts
for their own invoices, and anyone else's answer 404.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response

from app.api.deps import CurrentUser, get_current_user, get_services
from app.errors import NotFoundError
from app.models.receipts import ReceiptListResponse, ReceiptResponse
from app.services.container import InvoicingServices

router = APIRouter(prefix="/receipts", tags=["receipts"])


def _visible_receipt(receipt_id: int, user: CurrentUser, services: InvoicingServices) -> Dict[str, Any]:
    receipt = services.receipts.get(receipt_id)
    if not user.is_admin and receipt["client_id"] != user.user_id:
        raise NotFoundError("Receipt", receipt_id)
    return receipt


@router.get("", response_model=ReceiptListResponse)
def list_receipts(
    client_id: Optional[int] = Query(default=None, description="Admins only; clients always see their own"),
    user: CurrentUser = Depends(get_current_user),
    services: InvoicingServices = Depends(get_services),
) -> ReceiptListResponse:
    if not user.is_admin:
        client_id = user.user_id
    receipts = services.receipts.list_receipts(client_id=client_id)
    return ReceiptListResponse(receipts=receipts, count=len(receipts))


@router.get("/invoice/{invoice_id}", response_model=ReceiptListResponse)
def list_invoice_receipts(
    invoice_id: int,
    user: CurrentUser = Depends(get_current_user),
    services: InvoicingServices = Depends(get_services),
) -> ReceiptListResponse:
    invoice = services.invoices.get_invoice(invoice_id, include_deleted=True)
    if not user.is_admin and invoice["client_id"] != user.user_id:
        raise NotFoundError("Invoice", invoice_id)
    receipts = services.receipts.list_receipts(invoice_id=invoice_id)
    return ReceiptListResponse(receipts=receipts, count=len(receipts))


@router.get("/{receipt_id}", response_model=ReceiptResponse)
def get_receipt(
    receipt_id: int,
    user: CurrentUser = Depends(get_current_user),
    services: InvoicingServices = Depends(get_services),
) -> ReceiptResponse:
    return ReceiptResponse(receipt=_visible_receipt(receipt_id, user, services))


@router.get("/{receipt_id}/pdf")
def get_receipt_pdf(
    receipt_id: int,
    user: CurrentUser = Depends(get_current_user),
    services: InvoicingServices = Depends(get_services),
) -> Response:
    receipt = _visible_receipt(receipt_id, user, services)
    pdf_bytes = services.pdf_renderer.render_receipt(receipt)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{receipt["receipt_number"]}.pdf"'},
    )
