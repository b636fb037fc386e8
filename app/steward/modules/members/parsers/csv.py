from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.steward.csvio import CsvTable, get_value, read_csv_table
from app.steward.utils import parse_bool

REQUIRED_COLUMNS = ("first name", "last name")

HOUSEHOLD_COLUMNS = {
    "address1": ("household address1", "address1", "address 1", "address"),
    "address2": ("household address2", "address2", "address 2"),
    "city": ("household city", "city"),
    "state": ("household state", "state"),
    "zip": ("household zip", "zip", "zip code", "postal code"),
    "country": ("household country", "country"),
}


@dataclass
class MemberImportRow:
    """
    One parsed CSV row. Values are raw strings; the importer coerces them
    through the same rules as the JSON API.
    """

    row_number: int
    member: dict[str, Any]
    household_id: str = ""
    household_group: str = ""
    create_new_household: bool = False
    household_name: str = ""
    household_type: str = ""
    household_fields: dict[str, str] = field(default_factory=dict)


def missing_required_columns(table: CsvTable) -> list[str]:
    return [c for c in REQUIRED_COLUMNS if not table.has(c)]


def parse_member_row(row_number: int, row: dict[str, str]) -> MemberImportRow:
    member = {
        "firstName": get_value(row, "first name"),
        "middleName": get_value(row, "middle name"),
        "lastName": get_value(row, "last name"),
        "suffix": get_value(row, "suffix"),
        "preferredName": get_value(row, "preferred name"),
        "maidenName": get_value(row, "maiden name"),
        "title": get_value(row, "title"),
        "sex": get_value(row, "sex", "gender"),
        "dateOfBirth": get_value(row, "date of birth", "dob", "birth date"),
        "email1": get_value(row, "email1", "email 1", "email"),
        "email2": get_value(row, "email2", "email 2"),
        "phoneHome": get_value(row, "phone home", "home phone"),
        "phoneCell1": get_value(row, "phone cell1", "phone cell 1", "cell phone", "phone"),
        "phoneCell2": get_value(row, "phone cell2", "phone cell 2"),
        "baptismDate": get_value(row, "baptism date"),
        "confirmationDate": get_value(row, "confirmation date"),
        "receivedBy": get_value(row, "received by"),
        "dateReceived": get_value(row, "date received"),
        "removedBy": get_value(row, "removed by"),
        "dateRemoved": get_value(row, "date removed"),
        "deceasedDate": get_value(row, "deceased date"),
        "membershipCode": get_value(row, "membership code"),
        "envelopeNumber": get_value(row, "envelope number", "envelope"),
        "participation": get_value(row, "participation", "status"),
        "sequence": get_value(row, "sequence"),
    }
    return MemberImportRow(
        row_number=row_number,
        member=member,
        household_id=get_value(row, "household id"),
        household_group=get_value(row, "household group"),
        create_new_household=parse_bool(get_value(row, "create new household")),
        household_name=get_value(row, "household name"),
        household_type=get_value(row, "household type"),
        household_fields={k: get_value(row, *names) for k, names in HOUSEHOLD_COLUMNS.items()},
    )


def parse_members_csv(file_bytes: bytes) -> tuple[CsvTable, list[MemberImportRow]]:
    """
    Parse a member import file.

    Required headers: First Name, Last Name (case, underscores and spacing are ignored).
    Optional household columns control household assignment:
    Household Group, Create New Household, Household ID, Household Name.
    """
    table = read_csv_table(file_bytes)
    return table, [parse_member_row(n, row) for n, row in table.rows]
