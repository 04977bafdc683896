# app/api/invoices.py

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from app.api.deps import CurrentUser, get_services, require_admin
from app.models.invoices import (
    ApplyTermsIn,
    BatchExportIn,
    CreditIn,
    CreditListResponse,
    CreditResponse,
    DeleteResponse,
    DepositCreate,
    DepositListResponse,
    InternalNotesUpdate,
    InvoiceCreate,
    InvoicePreviewIn,
    InvoiceListResponse,
    InvoiceResponse,
    InvoiceUpdate,
    LateFeeQuoteResponse,
    PaymentIn,
    PaymentListResponse,
    PaymentResponse,
    StatusUpdate,
    TaxDiscountUpdate,
)
from app.models.reports import (
    AgingReportOut,
    InvoiceStatsOut,
    MonthlySummaryOut,
    PastDueResponse,
)
from app.services.container import InvoicingServices
from app.services.money import ZERO
from app.services.pdf import export_invoice_batch
from app.services.status import InvoiceStatus

router = APIRouter(prefix="/invoices", tags=["invoices"], dependencies=[Depends(require_admin)])


# ----------------------------------------------------------------------
# listing & reports (static paths before /{invoice_id})
# ----------------------------------------------------------------------

@router.get("", response_model=InvoiceListResponse)
def list_invoices(
    status: Optional[InvoiceStatus] = Query(default=None),
    client_id: Optional[int] = Query(default=None),
    project_id: Optional[int] = Query(default=None),
    invoice_type: Optional[str] = Query(default=None, description="standard | deposit"),
    include_deleted: bool = Query(default=False, description="Include archived invoices"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    services: InvoicingServices = Depends(get_services),
) -> InvoiceListResponse:
    items, total = services.invoices.list_invoices(
        status=status.value if status else None,
        client_id=client_id,
        project_id=project_id,
        invoice_type=invoice_type,
        include_deleted=include_deleted,
        limit=limit,
        offset=offset,
    )
    return InvoiceListResponse(invoices=items, total=total, limit=limit, offset=offset)


@router.get("/search", response_model=InvoiceListResponse)
def search_invoices(
    q: Optional[str] = Query(default=None, description="Matches invoice number, notes or client name"),
    status: Optional[InvoiceStatus] = Query(default=None),
    client_id: Optional[int] = Query(default=None),
    date_from: Optional[date] = Query(default=None, description="Issued on or after (YYYY-MM-DD)"),
    date_to: Optional[date] = Query(default=None, description="Issued on or before (YYYY-MM-DD)"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    services: InvoicingServices = Depends(get_services),
) -> InvoiceListResponse:
    items, total = services.invoices.list_invoices(
        search=q,
        status=status.value if status else None,
        client_id=client_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return InvoiceListResponse(invoices=items, total=total, limit=limit, offset=offset)


@router.get("/past-due", response_model=PastDueResponse)
def list_past_due_invoices(
    as_of: Optional[date] = Query(
        default=None,
        description="ISO date (YYYY-MM-DD); defaults to today in the business timezone",
    ),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    sort: Optional[str] = Query(
        default="due_date.asc",
        description="due_date.asc | due_date.desc",
    ),
    services: InvoicingServices = Depends(get_services),
) -> PastDueResponse:
    """
    Returns sent invoices with a positive outstanding balance whose due date is before as_of.
    """
    items, total = services.reporting.past_due(as_of=as_of, limit=limit, offset=offset, sort=sort)
    return PastDueResponse(items=items, total=total, limit=limit, offset=offset)


@router.get("/summary/month", response_model=MonthlySummaryOut)
def monthly_summary(
    month: str = Query(..., description="Target month in YYYY-MM format"),
    client_name: Optional[str] = Query(
        default=None,
        description="Optional client company name, case-insensitive exact match",
    ),
    services: InvoicingServices = Depends(get_services),
) -> MonthlySummaryOut:
    """
    Sum of invoice totals issued in the target month, optionally for one client.
    """
    return MonthlySummaryOut(**services.reporting.monthly_summary(month, client_name))


@router.get("/stats", response_model=InvoiceStatsOut)
def invoice_stats(
    client_id: Optional[int] = Query(default=None),
    services: InvoicingServices = Depends(get_services),
) -> InvoiceStatsOut:
    return InvoiceStatsOut(**services.reporting.stats(client_id))


@router.get("/aging", response_model=AgingReportOut)
def aging_report(
    client_id: Optional[int] = Query(default=None),
    as_of: Optional[date] = Query(default=None),
    services: InvoicingServices = Depends(get_services),
) -> AgingReportOut:
    return AgingReportOut(**services.reporting.aging_report(client_id, as_of))


@router.get("/payments", response_model=PaymentListResponse)
def list_all_payments(
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    services: InvoicingServices = Depends(get_services),
) -> PaymentListResponse:
    payments = services.ledger.all_payments(date_from, date_to)
    return PaymentListResponse(payments=payments, total_paid=sum((p["amount"] for p in payments), ZERO))


@router.get("/deposits/{project_id}", response_model=DepositListResponse)
def available_deposits(project_id: int, services: InvoicingServices = Depends(get_services)) -> DepositListResponse:
    """Paid deposits on a project that still have credit to apply."""
    return DepositListResponse(deposits=services.ledger.available_deposits(project_id))


@router.get("/number/{invoice_number}", response_model=InvoiceResponse)
def get_invoice_by_number(invoice_number: str, services: InvoicingServices = Depends(get_services)) -> InvoiceResponse:
    """
    Look up a single invoice by its invoice_number.
    """
    return InvoiceResponse(invoice=services.invoices.get_by_number(invoice_number))


# ----------------------------------------------------------------------
# creation
# ----------------------------------------------------------------------

@router.post("", response_model=InvoiceResponse, status_code=201)
def create_invoice(payload: InvoiceCreate, services: InvoicingServices = Depends(get_services)) -> InvoiceResponse:
    invoice = services.invoices.create_invoice(**payload.model_dump())
    return InvoiceResponse(message=f"Invoice {invoice['invoice_number']} created", invoice=invoice)


@router.post("/deposit", response_model=InvoiceResponse, status_code=201)
def create_deposit_invoice(payload: DepositCreate, services: InvoicingServices = Depends(get_services)) -> InvoiceResponse:
    invoice = services.invoices.create_deposit_invoice(**payload.model_dump())
    return InvoiceResponse(message=f"Deposit invoice {invoice['invoice_number']} created", invoice=invoice)


@router.post("/preview")
def preview_invoice(payload: InvoicePreviewIn, services: InvoicingServices = Depends(get_services)) -> Response:
    """Render the PDF for an invoice that is not saved."""
    invoice = services.invoices.preview_invoice(**payload.model_dump())
    return pdf_response(invoice, services)


@router.post("/export-batch")
def export_batch(payload: BatchExportIn, services: InvoicingServices = Depends(get_services)) -> Response:
    """ZIP of invoice PDFs plus a ``manifest.json`` listing any that failed."""
    exported_at = services.clock.now()
    archive, manifest = export_invoice_batch(
        services.invoices, services.pdf_renderer, payload.invoice_ids, exported_at
    )
    return Response(
        content=archive,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="invoices-{exported_at:%Y%m%d%H%M%S}.zip"',
            "X-Export-Errors": str(manifest["error_count"]),
        },
    )


# ----------------------------------------------------------------------
# single invoice
# ----------------------------------------------------------------------

@router.get("/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> InvoiceResponse:
    return InvoiceResponse(invoice=services.invoices.get_invoice(invoice_id))


@router.put("/{invoice_id}", response_model=InvoiceResponse)
def update_invoice(
    invoice_id: int,
    payload: InvoiceUpdate,
    services: InvoicingServices = Depends(get_services),
) -> InvoiceResponse:
    """Edit a draft invoice; line items are replaced as a whole."""
    invoice = services.invoices.update_invoice(invoice_id, **payload.model_dump(exclude_unset=True))
    return InvoiceResponse(message="Invoice updated", invoice=invoice)


@router.put("/{invoice_id}/tax-discount", response_model=InvoiceResponse)
def update_tax_discount(
    invoice_id: int,
    payload: TaxDiscountUpdate,
    services: InvoicingServices = Depends(get_services),
) -> InvoiceResponse:
    invoice = services.invoices.update_tax_discount(invoice_id, **payload.model_dump())
    return InvoiceResponse(message="Tax and discount updated", invoice=invoice)


@router.put("/{invoice_id}/internal-notes", response_model=InvoiceResponse)
def update_internal_notes(
    invoice_id: int,
    payload: InternalNotesUpdate,
    services: InvoicingServices = Depends(get_services),
) -> InvoiceResponse:
    invoice = services.invoices.update_internal_notes(invoice_id, payload.internal_notes)
    return InvoiceResponse(message="Internal notes updated", invoice=invoice)


@router.post("/{invoice_id}/apply-terms", response_model=InvoiceResponse)
def apply_payment_terms(
    invoice_id: int,
    payload: ApplyTermsIn,
    services: InvoicingServices = Depends(get_services),
) -> InvoiceResponse:
    invoice = services.invoices.apply_payment_terms(invoice_id, payload.payment_terms_id)
    return InvoiceResponse(message="Payment terms applied", invoice=invoice)


@router.post("/{invoice_id}/duplicate", response_model=InvoiceResponse, status_code=201)
def duplicate_invoice(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> InvoiceResponse:
    invoice = services.invoices.duplicate_invoice(invoice_id)
    return InvoiceResponse(message=f"Invoice duplicated as {invoice['invoice_number']}", invoice=invoice)


@router.put("/{invoice_id}/status", response_model=InvoiceResponse)
def update_status(
    invoice_id: int,
    payload: StatusUpdate,
    services: InvoicingServices = Depends(get_services),
) -> InvoiceResponse:
    """
    Move an invoice to the requested status. ``paid`` records a payment of
    the outstanding balance; ``draft`` and ``partial`` cannot be requested.
    """
    if payload.status is InvoiceStatus.PAID:
        invoice = services.ledger.settle_balance(
            invoice_id, payload.payment_method, payload.payment_reference
        )["invoice"]
    else:
        invoice = services.invoices.change_status(invoice_id, payload.status)
    return InvoiceResponse(message=f"Invoice is now {invoice['status']}", invoice=invoice)


@router.post("/{invoice_id}/send", response_model=InvoiceResponse)
def send_invoice(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> InvoiceResponse:
    invoice = services.invoices.send_invoice(invoice_id)
    return InvoiceResponse(message=f"Invoice {invoice['invoice_number']} sent", invoice=invoice)


@router.delete("/{invoice_id}", response_model=DeleteResponse)
def delete_invoice(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> DeleteResponse:
    """Drafts and cancelled invoices are deleted; sent ones are voided."""
    action = services.invoices.delete_or_void(invoice_id)["action"]
    return DeleteResponse(action=action, message=f"Invoice {action}")


@router.post("/{invoice_id}/archive", response_model=InvoiceResponse)
def archive_invoice(
    invoice_id: int,
    services: InvoicingServices = Depends(get_services),
    user: CurrentUser = Depends(require_admin),
) -> InvoiceResponse:
    invoice = services.invoices.soft_delete(invoice_id, deleted_by=user.label)
    return InvoiceResponse(message="Invoice archived", invoice=invoice)


@router.post("/{invoice_id}/restore", response_model=InvoiceResponse)
def restore_invoice(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> InvoiceResponse:
    invoice = services.invoices.restore(invoice_id)
    return InvoiceResponse(message="Invoice restored", invoice=invoice)


@router.get("/{invoice_id}/pdf")
def invoice_pdf(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> Response:
    invoice = services.invoices.get_invoice(invoice_id)
    return pdf_response(invoice, services)


def pdf_response(invoice, services: InvoicingServices) -> Response:
    pdf_bytes = services.pdf_renderer.render(invoice)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{invoice["invoice_number"]}.pdf"'},
    )


# ----------------------------------------------------------------------
# payments & credits
# ----------------------------------------------------------------------

@router.post("/{invoice_id}/record-payment", response_model=PaymentResponse)
def record_payment(
    invoice_id: int,
    payload: PaymentIn,
    services: InvoicingServices = Depends(get_services),
) -> PaymentResponse:
    result = services.ledger.record_payment(invoice_id, **payload.model_dump())
    return PaymentResponse(message=f"Payment of {result['payment']['amount']} recorded", **result)


@router.get("/{invoice_id}/payments", response_model=PaymentListResponse)
def payment_history(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> PaymentListResponse:
    payments = services.ledger.payment_history(invoice_id)
    return PaymentListResponse(payments=payments, total_paid=sum((p["amount"] for p in payments), ZERO))


@router.post("/{invoice_id}/apply-credit", response_model=CreditResponse)
def apply_credit(
    invoice_id: int,
    payload: CreditIn,
    services: InvoicingServices = Depends(get_services),
    user: CurrentUser = Depends(require_admin),
) -> CreditResponse:
    result = services.ledger.apply_credit(
        payload.deposit_invoice_id, invoice_id, payload.amount, applied_by=user.label
    )
    return CreditResponse(**result)


@router.get("/{invoice_id}/credits", response_model=CreditListResponse)
def list_credits(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> CreditListResponse:
    credits = services.ledger.credits_for(invoice_id)
    return CreditListResponse(credits=credits, total_credits=sum((c["amount"] for c in credits), ZERO))


# ----------------------------------------------------------------------
# late fees
# ----------------------------------------------------------------------

@router.get("/{invoice_id}/late-fee", response_model=LateFeeQuoteResponse)
def calculate_late_fee(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> LateFeeQuoteResponse:
    return LateFeeQuoteResponse(late_fee=services.late_fees.calculate_late_fee(invoice_id))


@router.post("/{invoice_id}/apply-late-fee", response_model=InvoiceResponse)
def apply_late_fee(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> InvoiceResponse:
    invoice = services.late_fees.apply_late_fee(invoice_id)
    return InvoiceResponse(message=f"Late fee of {invoice['late_fee_amount']} applied", invoice=invoice)
