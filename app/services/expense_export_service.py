"""
ClaimFlow - Expense Export Service

Renders expense lists as CSV or PDF files for finance staff. One row per
expense: creation date, employee, total, and the first line item's
category and description.
"""

import csv
import io
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Sequence
from xml.sax.saxutils import escape

# PDF Generation (reportlab)
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.models.expense import Expense


class ExportFormat(str, Enum):
    CSV = "csv"
    PDF = "pdf"


CSV_HEADERS = ["Date", "Employee Email", "Employee Name", "Amount", "Category", "Description", "Status"]

DEFAULT_CATEGORY = "General"


@dataclass
class ExportFile:
    """Rendered export ready to stream."""
    content: bytes
    filename: str
    media_type: str


def _format_amount(amount: Decimal) -> str:
    return f"{Decimal(amount):,.2f}"


def expense_row(expense: Expense) -> List[str]:
    """Cells of one export row, in CSV_HEADERS order."""
    first_item = expense.line_items[0] if expense.line_items else None
    owner = expense.owner
    return [
        expense.created_at.date().isoformat(),
        owner.email if owner else "",
        owner.name if owner else "",
        f"{Decimal(expense.total_amount):.2f}",
        (first_item.category if first_item and first_item.category else DEFAULT_CATEGORY),
        (first_item.description or "") if first_item else "",
        expense.state.value,
    ]


class ExpenseExportService:
    """Service for rendering expense exports."""

    def __init__(self):
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Setup custom paragraph styles for the export."""
        self.styles.add(ParagraphStyle(
            name='ExportTitle',
            parent=self.styles['Heading1'],
            fontSize=16,
            alignment=TA_CENTER,
            spaceAfter=12,
            textColor=colors.HexColor("#1a365d")
        ))
        self.styles.add(ParagraphStyle(
            name='ExportSubtitle',
            parent=self.styles['Normal'],
            fontSize=9,
            alignment=TA_CENTER,
            textColor=colors.HexColor("#718096")
        ))
        self.styles.add(ParagraphStyle(
            name='Cell',
            parent=self.styles['Normal'],
            fontSize=8,
            leading=10,
        ))

    def export(self, expenses: Sequence[Expense], export_format: ExportFormat) -> ExportFile:
        export_format = ExportFormat(export_format)
        stamp = date.today().isoformat()
        if export_format == ExportFormat.PDF:
            return ExportFile(
                content=self.generate_pdf(expenses),
                filename=f"expenses-export-{stamp}.pdf",
                media_type="application/pdf",
            )
        return ExportFile(
            content=self.generate_csv(expenses).encode("utf-8"),
            filename=f"expenses-export-{stamp}.csv",
            media_type="text/csv",
        )

    def generate_csv(self, expenses: Sequence[Expense]) -> str:
        """CSV text with a header row and every field quoted."""
        output = io.StringIO()
        writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for expense in expenses:
            writer.writerow(expense_row(expense))
        return output.getvalue()

    def generate_pdf(self, expenses: Sequence[Expense]) -> bytes:
        """PDF table of the expenses with a total row."""
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=landscape(A4),
            rightMargin=0.5*inch,
            leftMargin=0.5*inch,
            topMargin=0.5*inch,
            bottomMargin=0.5*inch,
            title="Expense Export",
        )

        elements = []
        elements.append(Paragraph("Expense Export", self.styles['ExportTitle']))
        elements.append(Paragraph(
            f"Generated {date.today().strftime('%B %d, %Y')} - {len(expenses)} expenses",
            self.styles['ExportSubtitle']
        ))
        elements.append(Spacer(1, 15))

        table_data = [CSV_HEADERS]
        for expense in expenses:
            row = expense_row(expense)
            row[3] = _format_amount(expense.total_amount)
            # Long descriptions wrap inside the cell
            row[5] = Paragraph(escape(row[5]), self.styles["Cell"])
            table_data.append(row)

        total = sum((expense.total_amount for expense in expenses), Decimal("0.00"))
        table_data.append(["", "", "TOTAL", _format_amount(total), "", "", ""])

        table = Table(
            table_data,
            colWidths=[0.9*inch, 2.0*inch, 1.5*inch, 1.0*inch, 1.1*inch, 2.8*inch, 1.2*inch],
            repeatRows=1,
        )
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor("#2d3748")),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 8),
            ('ALIGN', (3, 1), (3, -1), 'RIGHT'),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('BACKGROUND', (0, -1), (-1, -1), colors.HexColor("#e2e8f0")),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.gray),
            ('TOPPADDING', (0, 0), (-1, -1), 4),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
        ]))
        elements.append(table)

        doc.build(elements)
        return buffer.getvalue()


def get_expense_export_service() -> ExpenseExportService:
    """Factory function to create ExpenseExportService instance."""
    return ExpenseExportService()
