"""
Member bulk import.

Each row is committed on its own: a bad row is rolled back and reported as
"Row N: ..." without affecting rows before or after it.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.steward.audit import record_event
from app.steward.constants import HOUSEHOLD_TYPES, PARTICIPATION_STATUSES
from app.steward.errors import ApiError
from app.steward.models import Church, User
from app.steward.modules.members.models import Household, Member
from app.steward.modules.members.parsers.csv import MemberImportRow, missing_required_columns, parse_members_csv
from app.steward.modules.members.service import MEMBER_FIELDS, coerce_field, email_in_use, get_household, normalize_enum
from app.steward.rbac import check_member_limit
from app.steward.utils import normalize_text

logger = logging.getLogger(__name__)


class RowError(Exception):
    pass


def _new_household(church: Church, r: MemberImportRow, first: str, last: str) -> Household:
    h = Household(
        church_id=church.id,
        name=normalize_text(r.household_name) or f"{first} {last}",
        type=normalize_enum(r.household_type, HOUSEHOLD_TYPES) or "single",
    )
    for column, value in r.household_fields.items():
        setattr(h, column, normalize_text(value))
    return h


def _resolve_household(
    s: Session,
    church: Church,
    r: MemberImportRow,
    groups: dict[str, int],
    first: str,
    last: str,
) -> tuple[Household | int, str | None]:
    """
    Returns (household or existing household id, group key to remember).
    Resolution order: household group, create-new flag, household id, auto-create.
    """
    group_key = (r.household_group or "").strip().lower() or None
    if group_key and group_key in groups:
        return groups[group_key], None
    if r.create_new_household:
        return _new_household(church, r, first, last), group_key
    if r.household_id:
        h = get_household(s, church.id, r.household_id)
        if h is None:
            raise RowError(f"Household ID {r.household_id} not found")
        return h.id, group_key
    return _new_household(church, r, first, last), group_key


def _import_row(s: Session, church: Church, r: MemberImportRow, groups: dict[str, int]) -> None:
    first = normalize_text(r.member.get("firstName"))
    last = normalize_text(r.member.get("lastName"))
    if not first or not last:
        raise RowError("First name and last name are required")

    email1 = normalize_text(r.member.get("email1"))
    if email1 and email_in_use(s, church.id, email1):
        raise RowError(f"Email {email1} already exists")

    resolved, group_key = _resolve_household(s, church, r, groups, first, last)
    if isinstance(resolved, Household):
        s.add(resolved)
        s.flush()
        household_id = resolved.id
    else:
        household_id = resolved

    m = Member(
        church_id=church.id,
        household_id=household_id,
        participation=normalize_enum(r.member.get("participation"), PARTICIPATION_STATUSES) or "active",
    )
    for key, (column, kind) in MEMBER_FIELDS.items():
        # Invalid enums and dates quietly become null on import.
        setattr(m, column, coerce_field(kind, r.member.get(key)))
    s.add(m)
    s.flush()
    if group_key:
        groups[group_key] = household_id


def import_members(s: Session, church: Church, file_bytes: bytes, *, user: User | None) -> dict[str, Any]:
    try:
        table, rows = parse_members_csv(file_bytes)
    except ValueError as e:
        raise ApiError(str(e)) from e

    missing = missing_required_columns(table)
    if missing:
        raise ApiError(
            f"CSV must include columns: First Name, Last Name (missing: {', '.join(missing)})",
            payload={
                "foundHeaders": table.raw_headers,
                "hint": "Header names are case-insensitive; underscores and spaces are interchangeable.",
            },
        )

    limit = check_member_limit(s, church, adding=len(rows))
    if not limit.allowed:
        raise ApiError(
            f"Import would exceed your member limit. Your {limit.plan} plan allows up to {limit.limit} members "
            f"({limit.current_count} used, {limit.remaining} remaining); this file has {len(rows)} rows.",
            status_code=403,
            payload={"limit": limit.to_dict()},
        )

    results: dict[str, Any] = {"success": 0, "failed": 0, "errors": []}
    groups: dict[str, int] = {}
    for r in rows:
        try:
            _import_row(s, church, r, groups)
            s.commit()
            results["success"] += 1
        except RowError as e:
            s.rollback()
            results["failed"] += 1
            results["errors"].append(f"Row {r.row_number}: {e}")
        except SQLAlchemyError as e:
            s.rollback()
            logger.warning("Member import row %s failed: %s", r.row_number, e)
            results["failed"] += 1
            results["errors"].append(f"Row {r.row_number}: Could not save member")

    record_event(
        s,
        actor=user,
        action="member.bulk_import",
        church_id=church.id,
        entity_type="Member",
        metadata={"success": results["success"], "failed": results["failed"]},
    )
    s.commit()
    return results
