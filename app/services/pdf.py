# app/services/pdf.py

import io
import json
import logging
import zipfile
from datetime import datetime
from typing import Any, Dict, Iterable, List, Protocol, Tuple

from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings
from app.errors import InvoicingError, ValidationError
from app.templating import build_environment

logger = logging.getLogger(__name__)

MAX_BATCH_EXPORT = 100

_env = build_environment()


class PdfRenderer(Protocol):
    def render(self, invoice: Dict[str, Any]) -> bytes:
        ...

    def render_receipt(self, receipt: Dict[str, Any]) -> bytes:
        ...


def render_invoice_html(invoice: Dict[str, Any], settings: Settings) -> str:
    return _env.get_template("invoice.html").render(
        invoice=invoice,
        business_name=settings.business_name,
        business_email=settings.business_email,
    )


def render_receipt_html(receipt: Dict[str, Any], settings: Settings) -> str:
    return _env.get_template("receipt.html").render(
        receipt=receipt,
        business_name=settings.business_name,
        business_email=settings.business_email,
    )


class WeasyPrintRenderer:
    """Invoice and receipt HTML -> PDF bytes through WeasyPrint."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _write_pdf(self, html: str) -> bytes:
        # WeasyPrint pulls in pango/cairo at import time; only load it when asked for a PDF
        from weasyprint import HTML

        return HTML(string=html).write_pdf()

    def render(self, invoice: Dict[str, Any]) -> bytes:
        pdf_bytes = self._write_pdf(render_invoice_html(invoice, self.settings))
        logger.info("Rendered PDF for invoice %s (%d bytes)", invoice["invoice_number"], len(pdf_bytes))
        return pdf_bytes

    def render_receipt(self, receipt: Dict[str, Any]) -> bytes:
        pdf_bytes = self._write_pdf(render_receipt_html(receipt, self.settings))
        logger.info("Rendered PDF for receipt %s (%d bytes)", receipt["receipt_number"], len(pdf_bytes))
        return pdf_bytes


def export_invoice_batch(
    invoice_service,
    renderer: PdfRenderer,
    invoice_ids: Iterable[int],
    exported_at: datetime,
) -> Tuple[bytes, Dict[str, Any]]:
    """
    Render each invoice into one ZIP archive. An invoice that cannot be
    loaded or rendered is listed in ``manifest.json`` instead of failing
    the whole export.
    """
    invoice_ids = list(invoice_ids)
    if not invoice_ids:
        raise ValidationError("invoiceIds must be a non-empty list")
    if len(invoice_ids) > MAX_BATCH_EXPORT:
        raise ValidationError(
            f"Maximum {MAX_BATCH_EXPORT} invoices can be exported at once", code="TOO_MANY_INVOICES"
        )

    errors: List[Dict[str, Any]] = []
    exported = 0
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
        for invoice_id in invoice_ids:
            try:
                invoice = invoice_service.get_invoice(invoice_id)
                archive.writestr(f"{invoice['invoice_number']}.pdf", renderer.render(invoice))
            except (InvoicingError, SQLAlchemyError, OSError) as exc:
                logger.error("Could not export invoice %s: %s", invoice_id, exc)
                errors.append({"id": invoice_id, "error": getattr(exc, "message", str(exc))})
                continue
            exported += 1

        manifest = {
            "exported_at": exported_at.isoformat(),
            "total_requested": len(invoice_ids),
            "success_count": exported,
            "error_count": len(errors),
            "errors": errors,
        }
        archive.writestr("manifest.json", json.dumps(manifest, indent=2))

    logger.info("Exported %d of %d invoices", exported, len(invoice_ids))
    return buf.getvalue(), manifest
