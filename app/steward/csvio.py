from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class CsvRowError:
    row_number: int
    message: str

    def __str__(self) -> str:
        return f"Row {self.row_number}: {self.message}"


@dataclass
class CsvTable:
    headers: list[str]
    raw_headers: list[str]
    # (row_number, {normalized header: value}); row 1 is the header row.
    rows: list[tuple[int, dict[str, str]]] = field(default_factory=list)

    def has(self, *names: str) -> bool:
        return any(_variants_present(self.headers, n) for n in names)


def normalize_header(h: str | None) -> str:
    """'\\ufeffFirst_Name ' -> 'first name'"""
    s = (h or "").replace("\ufeff", "").replace("_", " ")
    return _WS_RE.sub(" ", s).strip().lower()


def _variants_present(headers: list[str], name: str) -> bool:
    n = normalize_header(name)
    return n in headers or n.replace(" ", "") in headers


def get_value(row: dict[str, str], *names: str) -> str:
    """First non-empty value among header names (spaced or unspaced variants)."""
    for name in names:
        n = normalize_header(name)
        for key in (n, n.replace(" ", "")):
            v = row.get(key)
            if v is not None and str(v).strip() != "":
                return str(v).strip()
    return ""


def read_csv_table(file_bytes: bytes) -> CsvTable:
    """
    Parse an uploaded CSV. Headers are normalized; fully empty rows are skipped.
    Raises ValueError when there is no header row.
    """
    text = file_bytes.decode("utf-8-sig", errors="replace")
    reader = csv.reader(io.StringIO(text))
    try:
        raw_headers = next(reader)
    except StopIteration:
        raise ValueError("CSV file is empty.") from None
    headers = [normalize_header(h) for h in raw_headers]
    if not any(headers):
        raise ValueError("CSV has no header row.")

    table = CsvTable(headers=headers, raw_headers=[h.replace("\ufeff", "").strip() for h in raw_headers])
    for idx, values in enumerate(reader, start=2):  # 1 = header
        if not values or all((v or "").strip() == "" for v in values):
            continue
        row: dict[str, str] = {}
        for i, h in enumerate(headers):
            if not h:
                continue
            row[h] = values[i].strip() if i < len(values) else ""
        table.rows.append((idx, row))
    return table


def build_csv(headers: list[str], rows: Iterable[dict[str, Any] | list[Any]]) -> str:
    """Serialize rows (dicts keyed by header, or positional lists) to CSV text."""
    out = io.StringIO()
    w = csv.writer(out, lineterminator="\n")
    w.writerow(headers)
    for row in rows:
        if isinstance(row, dict):
            values = [row.get(h) for h in headers]
        else:
            values = list(row)
        w.writerow(["" if v is None else v for v in values])
    return out.getvalue()
