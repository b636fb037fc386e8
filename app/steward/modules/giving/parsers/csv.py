from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from app.steward.csvio import CsvRowError, CsvTable, get_value, read_csv_table
from app.steward.utils import parse_amount, parse_int, parse_iso_date

# Legacy column names accepted for category amounts.
CATEGORY_ALIASES = {
    "current": "Current",
    "mission": "Mission",
    "memorials": "Memorials",
    "debt": "Debt",
    "school": "School",
    "miscellaneous": "Miscellaneous",
    "general fund": "Current",
    "generalfund": "Current",
    "district synod": "Mission",
    "districtsynod": "Mission",
}

DATE_COLUMNS = ("date given", "dategiven", "date")
ENVELOPE_COLUMNS = ("envelope number", "envelopenumber")
MEMBER_ID_COLUMNS = ("member id", "memberid")
# A bare "amount" column is recorded against the Current category.
AMOUNT_COLUMN = "amount"
DEFAULT_AMOUNT_CATEGORY = "Current"


@dataclass
class GivingImportRow:
    row_number: int
    date_given: date
    envelope_number: int | None
    member_id: int | None
    notes: str | None
    # category_id -> amount, positive amounts only
    amounts: dict[int, Decimal] = field(default_factory=dict)


@dataclass
class GivingCsvLayout:
    """How the header row maps onto categories and identifiers."""

    header_to_category: dict[str, int]
    amount_category_id: int | None
    has_date: bool
    has_envelope: bool
    has_member_id: bool

    @property
    def has_any_category(self) -> bool:
        return bool(self.header_to_category) or self.amount_category_id is not None


def build_layout(table: CsvTable, categories: dict[str, int]) -> GivingCsvLayout:
    """
    categories: active category name -> id.
    Headers match a category by its name (case-insensitive) or by a legacy alias.
    """
    by_lower = {name.lower(): cid for name, cid in categories.items()}
    header_to_category: dict[str, int] = {}
    for h in table.headers:
        if not h or h == AMOUNT_COLUMN:
            continue
        cid = by_lower.get(h)
        if cid is None and h in CATEGORY_ALIASES:
            cid = categories.get(CATEGORY_ALIASES[h])
        if cid is not None:
            header_to_category[h] = cid

    amount_category_id = None
    if AMOUNT_COLUMN in table.headers:
        amount_category_id = categories.get(DEFAULT_AMOUNT_CATEGORY)

    return GivingCsvLayout(
        header_to_category=header_to_category,
        amount_category_id=amount_category_id,
        has_date=table.has(*DATE_COLUMNS),
        has_envelope=table.has(*ENVELOPE_COLUMNS),
        has_member_id=table.has(*MEMBER_ID_COLUMNS),
    )


def layout_error(layout: GivingCsvLayout, category_names: list[str]) -> str | None:
    if not layout.has_any_category:
        return (
            "Missing required column: at least one category amount column is required. "
            f"Available categories: {', '.join(category_names)}"
        )
    if not layout.has_date:
        return "Missing required column: date given (or 'dategiven' or 'date')"
    if not layout.has_envelope and not layout.has_member_id:
        return "Missing required column: envelope number or member id"
    return None


def parse_giving_row(row_number: int, row: dict[str, str], layout: GivingCsvLayout) -> GivingImportRow:
    raw_date = get_value(row, *DATE_COLUMNS)
    if not raw_date:
        raise ValueError("Missing required field (date given)")
    date_given = parse_iso_date(raw_date)
    if date_given is None:
        raise ValueError("Invalid date format (use YYYY-MM-DD)")

    amounts: dict[int, Decimal] = {}

    def add(header: str, category_id: int) -> None:
        raw = get_value(row, header)
        if not raw:
            return
        amount = parse_amount(raw)
        if amount is None:
            raise ValueError(f"Invalid amount for {header}")
        if amount < 0:
            raise ValueError(f"Invalid amount for {header} (must be non-negative)")
        if amount > 0:
            amounts[category_id] = amounts.get(category_id, Decimal("0")) + amount

    if layout.amount_category_id is not None:
        add(AMOUNT_COLUMN, layout.amount_category_id)
    for header, category_id in layout.header_to_category.items():
        add(header, category_id)
    if not amounts:
        raise ValueError("At least one amount is required")

    raw_envelope = get_value(row, *ENVELOPE_COLUMNS)
    raw_member_id = get_value(row, *MEMBER_ID_COLUMNS)
    envelope_number = parse_int(raw_envelope) if raw_envelope else None
    if raw_envelope and envelope_number is None:
        raise ValueError("Invalid envelope number")
    member_id = parse_int(raw_member_id) if raw_member_id else None
    if envelope_number is None and member_id is None:
        raise ValueError("Must provide either envelope number or member id")

    return GivingImportRow(
        row_number=row_number,
        date_given=date_given,
        envelope_number=envelope_number,
        member_id=member_id,
        notes=get_value(row, "notes", "note") or None,
        amounts=amounts,
    )


def parse_giving_csv(
    file_bytes: bytes, categories: dict[str, int]
) -> tuple[GivingCsvLayout, list[GivingImportRow], list[CsvRowError]]:
    """
    Parse a giving import file against the church's active categories.
    Returns the layout, well-formed rows and per-row errors.
    Raises ValueError when the header row is unusable.
    """
    table = read_csv_table(file_bytes)
    if not table.rows:
        raise ValueError("CSV file must have at least a header row and one data row")
    layout = build_layout(table, categories)
    err = layout_error(layout, list(categories))
    if err:
        raise ValueError(err)

    rows: list[GivingImportRow] = []
    errors: list[CsvRowError] = []
    for n, row in table.rows:
        try:
            rows.append(parse_giving_row(n, row, layout))
        except ValueError as e:
            errors.append(CsvRowError(n, str(e)))
    return layout, rows, errors
