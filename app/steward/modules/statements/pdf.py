"""
Donor contribution statement PDF (US letter, core Helvetica font).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from fpdf import FPDF
from fpdf.enums import XPos, YPos

from app.steward.models import Church
from app.steward.modules.members.models import Household

DEFAULT_GOODS_PROVIDED = (
    "Goods or services were provided in exchange for your contributions. "
    "Please see the details above for the fair market value of items received."
)
NO_GOODS_PROVIDED = (
    "No goods or services were provided in exchange for your contributions, "
    "except for intangible religious benefits."
)


@dataclass(frozen=True)
class StatementLine:
    date_given: date
    category_name: str
    amount: Decimal


@dataclass
class StatementData:
    church: Church
    household: Household
    household_name: str
    year: int
    start_date: date
    end_date: date
    statement_number: str
    generated_on: date
    lines: list[StatementLine] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((ln.amount for ln in self.lines), Decimal("0"))

    def category_totals(self) -> list[tuple[str, Decimal]]:
        totals: dict[str, Decimal] = {}
        for ln in self.lines:
            totals[ln.category_name] = totals.get(ln.category_name, Decimal("0")) + ln.amount
        return list(totals.items())


def format_currency(amount: Decimal) -> str:
    return f"${amount:,.2f}"


def format_date(d: date) -> str:
    return d.strftime("%m/%d/%Y")


def default_disclaimer(church: Church) -> str:
    ein = f". Our Employer Identification Number (EIN) is {church.tax_id}" if church.tax_id else ""
    goods = (
        (church.goods_services_statement or DEFAULT_GOODS_PROVIDED)
        if church.goods_services_provided
        else NO_GOODS_PROVIDED
    )
    return (
        f"This letter acknowledges that {church.name} is a tax-exempt organization under Section 501(c)(3) "
        f"of the Internal Revenue Code{ein}.\n\n{goods}\n\nPlease retain this statement for your tax records."
    )


def _latin1(text: str) -> str:
    # Core PDF fonts only cover latin-1.
    return text.encode("latin-1", "replace").decode("latin-1")


class StatementPDF(FPDF):
    def line_text(self, text: str, *, h: float = 5, align: str = "L") -> None:
        self.cell(0, h, _latin1(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT, align=align)

    def section_title(self, text: str) -> None:
        self.ln(4)
        self.set_font("Helvetica", "B", 11)
        self.line_text(text, h=7)
        self.set_font("Helvetica", "", 10)

    def two_col(self, left: str, right: str, *, bold: bool = False, border: str | int = 0) -> None:
        self.set_font("Helvetica", "B" if bold else "", 10)
        width = self.epw
        self.cell(width * 0.7, 6, _latin1(left), border=border)
        self.cell(width * 0.3, 6, _latin1(right), border=border, align="R", new_x=XPos.LMARGIN, new_y=YPos.NEXT)


def render_statement_pdf(data: StatementData) -> bytes:
    church = data.church
    h = data.household
    pdf = StatementPDF(format="Letter")
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()

    # Church header
    pdf.set_font("Helvetica", "B", 16)
    pdf.line_text(church.name, h=8, align="C")
    pdf.set_font("Helvetica", "", 10)
    if church.address:
        pdf.line_text(church.address, align="C")
    city_line = ", ".join(p for p in (church.city, church.state, church.zip) if p)
    if city_line:
        pdf.line_text(city_line, align="C")
    if church.phone:
        pdf.line_text(f"Phone: {church.phone}", align="C")
    if church.email:
        pdf.line_text(f"Email: {church.email}", align="C")
    if church.tax_id:
        pdf.set_font("Helvetica", "B", 10)
        pdf.line_text(f"EIN: {church.tax_id}", align="C")

    pdf.ln(6)
    pdf.set_font("Helvetica", "B", 14)
    pdf.line_text("DONOR CONTRIBUTION STATEMENT", h=8, align="C")
    pdf.ln(2)

    pdf.set_font("Helvetica", "", 10)
    pdf.line_text(f"Statement Number: {data.statement_number}")
    pdf.line_text(f"Tax Year: {data.year}")
    pdf.line_text(f"Period: {format_date(data.start_date)} - {format_date(data.end_date)}")
    pdf.line_text(f"Generated: {format_date(data.generated_on)}")

    pdf.section_title("Prepared For:")
    pdf.line_text(data.household_name)
    for part in (h.address1, h.address2):
        if part:
            pdf.line_text(part)
    donor_city = ", ".join(p for p in (h.city, h.state, h.zip) if p)
    if donor_city:
        pdf.line_text(donor_city)

    pdf.section_title("Contribution Summary by Category")
    for name, total in data.category_totals():
        pdf.two_col(name, format_currency(total))
    pdf.two_col("TOTAL CONTRIBUTIONS", format_currency(data.total), bold=True, border="T")

    pdf.section_title("Detailed Contributions")
    widths = (pdf.epw * 0.25, pdf.epw * 0.5, pdf.epw * 0.25)
    pdf.set_font("Helvetica", "B", 10)
    for w, title, align in zip(widths, ("Date", "Category", "Amount"), ("L", "L", "R")):
        pdf.cell(w, 7, title, border="B", align=align)
    pdf.ln()
    pdf.set_font("Helvetica", "", 10)
    for ln in data.lines:
        pdf.cell(widths[0], 6, format_date(ln.date_given))
        pdf.cell(widths[1], 6, _latin1(ln.category_name))
        pdf.cell(widths[2], 6, format_currency(ln.amount), align="R")
        pdf.ln()
    pdf.set_font("Helvetica", "B", 10)
    pdf.cell(widths[0], 7, "", border="T")
    pdf.cell(widths[1], 7, "TOTAL", border="T")
    pdf.cell(widths[2], 7, format_currency(data.total), border="T", align="R")
    pdf.ln(10)

    pdf.set_font("Helvetica", "", 9)
    disclaimer = church.tax_statement_disclaimer or default_disclaimer(church)
    pdf.multi_cell(0, 5, _latin1(disclaimer), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    pdf.ln(6)
    pdf.line_text("If you have questions about this statement, please contact us at:", align="C")
    pdf.line_text(church.email or church.phone or church.name, align="C")
    pdf.ln(3)
    pdf.set_font("Helvetica", "I", 9)
    pdf.line_text(f"Thank you for your generous support of {church.name}.", align="C")

    return bytes(pdf.output())
