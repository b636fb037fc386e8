"""
Giving bulk import.

Rows are validated first; every valid row is then inserted in a single
transaction. If that transaction fails, the whole batch is reported as failed.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.steward.audit import record_event
from app.steward.errors import ApiError
from app.steward.models import Church, User
from app.steward.modules.giving.models import Giving, GivingItem
from app.steward.modules.giving.parsers.csv import GivingImportRow, parse_giving_csv
from app.steward.modules.giving.service import list_categories, member_for_envelope
from app.steward.modules.members.models import Member

logger = logging.getLogger(__name__)


def _target_member_id(s: Session, church: Church, r: GivingImportRow) -> int:
    if r.envelope_number is not None:
        m = member_for_envelope(s, church.id, r.envelope_number)
        if m is None:
            raise ValueError(f"No members found for envelope number {r.envelope_number}")
        return m.id
    m = s.query(Member.id).filter(Member.id == r.member_id, Member.church_id == church.id).one_or_none()
    if m is None:
        raise ValueError(f"Member not found with ID {r.member_id}")
    return r.member_id  # type: ignore[return-value]


def import_giving(s: Session, church: Church, file_bytes: bytes, *, user: User | None) -> dict[str, Any]:
    categories = {c.name: c.id for c in list_categories(s, church.id, active_only=True)}
    try:
        _, rows, row_errors = parse_giving_csv(file_bytes, categories)
    except ValueError as e:
        raise ApiError(str(e)) from e

    results: dict[str, Any] = {"success": 0, "failed": len(row_errors), "errors": [str(e) for e in row_errors]}

    pending: list[tuple[int, GivingImportRow]] = []
    for r in rows:
        try:
            pending.append((_target_member_id(s, church, r), r))
        except ValueError as e:
            results["failed"] += 1
            results["errors"].append(f"Row {r.row_number}: {e}")

    if pending:
        try:
            for member_id, r in pending:
                gv = Giving(member_id=member_id, date_given=r.date_given, notes=r.notes)
                gv.items = [GivingItem(category_id=cid, amount=amount) for cid, amount in r.amounts.items()]
                s.add(gv)
            s.flush()
            record_event(
                s,
                actor=user,
                action="giving.bulk_import",
                church_id=church.id,
                entity_type="Giving",
                metadata={"inserted": len(pending), "failed": results["failed"]},
            )
            s.commit()
            results["success"] = len(pending)
        except SQLAlchemyError as e:
            s.rollback()
            logger.warning("Giving import for church %s failed: %s", church.id, e)
            results["failed"] += len(pending)
            results["errors"].append("Database error: the import could not be saved")

    results["errors"].sort(key=_row_sort_key)
    return results


def _row_sort_key(msg: str) -> tuple[int, str]:
    # "Row 12: ..." sorts by row number; anything else goes last.
    if msg.startswith("Row "):
        head = msg[4:].split(":", 1)[0]
        if head.isdigit():
            return int(head), msg
    return 1 << 30, msg
