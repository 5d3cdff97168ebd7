# -*- coding: utf-8 -*-
# crystal_bot/integrations/invoice_pdf.py
# =============================================================================
# Назначение кода:
#   PDF-инвойс оплаченного заказа (reportlab) → {INVOICES_DIR}/INV-XXXXXXXX.pdf.
#
# Канон:
#   • Номер инвойса: INV- + первые 8 символов id заказа в верхнем регистре.
#   • Функция синхронная (reportlab блокирующий); из async-кода вызывать
#     через asyncio.to_thread.
#   • Повторный рендер перезаписывает файл тем же содержимым.
# =============================================================================

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from crystal_bot.core.logging_core import get_logger
from crystal_bot.core.utils_core import format_usd, invoice_number, utcnow

logger = get_logger(__name__)


def invoice_path(order_id: str, directory: Path) -> Path:
    return Path(directory) / f"{invoice_number(order_id)}.pdf"


def _fmt_dt(dt: Any) -> str:
    if not dt:
        return "-"
    return dt.isoformat(timespec="seconds").replace("+00:00", "Z")


def render_invoice(order: Any, store_name: str, directory: Path, *, issued_at: Optional[Any] = None) -> Path:
    """Рендерит инвойс заказа и возвращает путь к файлу."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    number = invoice_number(order.id)
    path = invoice_path(order.id, directory)

    doc = SimpleDocTemplate(
        str(path),
        pagesize=A4,
        leftMargin=15 * mm,
        rightMargin=15 * mm,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
        title=f"{store_name} {number}",
    )
    styles = getSampleStyleSheet()
    story: list[Any] = [
        Paragraph(f"<b>{escape(store_name)}</b>", styles["Title"]),
        Paragraph(f"Invoice <b>{number}</b>", styles["Heading2"]),
        Paragraph(f"Issued at: {_fmt_dt(issued_at or utcnow())}", styles["Normal"]),
        Spacer(1, 10),
    ]

    total = format_usd(order.total_amount)
    rows = [
        ["Order ID", order.id],
        ["Buyer", f"{order.buyer_tag or '-'} ({order.buyer_id})"],
        ["Product", order.product_name],
        ["Price", format_usd(order.original_amount)],
    ]
    if order.coupon_code:
        rows.append(["Coupon", order.pricing_label or order.coupon_code])
        rows.append(["Discount", f"-{format_usd(order.discount_amount)}"])
    rows.extend(
        [
            ["Total", total],
            ["Payment method", order.payment_method or "-"],
            ["Paid amount", order.paid_amount or total],
            ["Transaction ID", order.transaction_id or "-"],
            ["Paid at", _fmt_dt(order.paid_at)],
        ]
    )

    table = Table([["Field", "Value"]] + rows, colWidths=[45 * mm, 125 * mm])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#111827")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.whitesmoke, colors.white]),
                ("LEFTPADDING", (0, 0), (-1, -1), 4),
                ("RIGHTPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    story.append(table)
    story.append(Spacer(1, 14))
    story.append(Paragraph("Thank you for your purchase!", styles["Normal"]))

    doc.build(story)
    logger.info("Invoice rendered", extra={"details": {"invoice": number}})
    return path


__all__ = ["invoice_path", "render_invoice"]
