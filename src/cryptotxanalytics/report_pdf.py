# report_pdf.py
"""
PDF spending summary (reportlab): headline totals, monthly cash-flow and the
transaction list.
"""

import io
from typing import Any, List, Optional, Sequence

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .schemas import Analytics, DashboardSummary, LedgerEntry, MonthlyData

MAX_TRANSACTION_ROWS = 500


def _make_wrapped_table(data: List[List[Any]], styles, usable_width: float) -> Table:
    """
    Table whose cells wrap and whose columns share `usable_width` in
    proportion to their text length (header + first 50 rows), clamped so no
    column becomes unreadable. data[0] is the header row.
    """
    wrap_style = ParagraphStyle("WrapSmall", parent=styles["Normal"], fontSize=8, leading=10, wordWrap="CJK")
    cells = [[Paragraph("" if c is None else str(c), wrap_style) for c in row] for row in data]

    ncols = len(data[0]) if data else 0
    if ncols == 0:
        return Table(cells, hAlign="LEFT")

    weights = [0] * ncols
    for row in data[:51]:
        for i, c in enumerate(row):
            weights[i] += max(1, min(len("" if c is None else str(c)), 80))

    total = sum(weights)
    widths = [max(0.7 * inch, min(1.8 * inch, w / total * usable_width)) for w in weights]
    scale = usable_width / sum(widths)
    widths = [w * scale for w in widths]

    t = Table(cells, hAlign="LEFT", colWidths=widths, repeatRows=1)
    t.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.black),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ("TOPPADDING", (0, 0), (-1, -1), 3),
            ]
        )
    )
    return t


def _money(x: Optional[float], currency: str = "") -> str:
    if x is None:
        return "-"
    return f"{x:,.2f} {currency}".strip()


def build_summary_pdf(
    transactions: Sequence[LedgerEntry],
    dashboard: DashboardSummary,
    analytics: Optional[Analytics] = None,
    title: str = "Spending Summary",
) -> bytes:
    """Render the summary and return the PDF bytes."""
    base = dashboard.base_currency
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=0.5 * inch,
        rightMargin=0.5 * inch,
        topMargin=0.5 * inch,
        bottomMargin=0.5 * inch,
    )
    styles = getSampleStyleSheet()
    usable = doc.width
    story: List[Any] = [
        Paragraph(title, styles["Title"]),
        Paragraph(f"Generated {dashboard.last_calculated_at} - base currency {base}", styles["Normal"]),
        Spacer(1, 12),
    ]

    totals = [
        ["Field", "Value"],
        ["Total spent", _money(dashboard.total_spent, base)],
        ["Total received", _money(dashboard.total_added, base)],
        ["Net balance", _money(dashboard.net_balance, base)],
        ["Total fees", _money(dashboard.total_fees)],
        ["Transactions", str(len(transactions))],
    ]
    if analytics is not None and analytics.average_transaction is not None:
        totals.append(["Average transaction", _money(analytics.average_transaction.amount, base)])
    story += [Paragraph("Totals", styles["Heading2"]), _make_wrapped_table(totals, styles, usable), Spacer(1, 10)]

    if dashboard.spending_alerts:
        story.append(Paragraph("Alerts", styles["Heading2"]))
        story += [Paragraph(a, styles["Normal"]) for a in dashboard.spending_alerts]
        story.append(Spacer(1, 10))

    months: List[MonthlyData] = [m for m in dashboard.monthly_data if m.transaction_count]
    if months:
        data = [["Month", "Income", "Expenses", "Net", "Transactions"]] + [
            [f"{m.year}-{m.month}", _money(m.income), _money(m.expenses), _money(m.net), m.transaction_count]
            for m in months
        ]
        story += [Paragraph("Monthly breakdown", styles["Heading2"]), _make_wrapped_table(data, styles, usable), Spacer(1, 10)]

    story.append(Paragraph("Transactions", styles["Heading2"]))
    if transactions:
        data = [["Date", "To", "Category", "Amount", "Status"]]
        for tx in list(transactions)[:MAX_TRANSACTION_ROWS]:
            outgoing = tx.value_out is not None
            side = tx.value_out if outgoing else tx.value_in
            amount = f"{'-' if outgoing else '+'}{side.amount:.2f} {side.token}" if side else "-"
            data.append([tx.timestamp[:10], (tx.to_address or "")[:10], tx.category or "other", amount, tx.status.value])
        story.append(_make_wrapped_table(data, styles, usable))
    else:
        story.append(Paragraph("No transactions to display.", styles["Normal"]))

    doc.build(story)
    return buffer.getvalue()
