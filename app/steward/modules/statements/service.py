from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from flask import current_app
from sqlalchemy.orm import Session

from app.steward.audit import record_event
from app.steward.emailer import send_giving_statement_email
from app.steward.errors import ApiError, NotFound
from app.steward.models import Church, User
from app.steward.modules.giving.models import Giving, GivingCategory, GivingItem
from app.steward.modules.members.models import Household, Member
from app.steward.modules.members.service import head_of_household, household_display_name
from app.steward.modules.statements.models import GivingStatement
from app.steward.modules.statements.pdf import StatementData, StatementLine, render_statement_pdf
from app.steward.storage import storage_from_config
from app.steward.utils import iso, money, parse_int, to_base36

logger = logging.getLogger(__name__)


def tax_info_warnings(church: Church) -> list[str]:
    missing: list[str] = []
    if not church.tax_id:
        missing.append("Tax ID (EIN)")
    if not church.is_501c3:
        missing.append("501(c)(3) status")
    return missing


def statement_number(year: int, household_id: int, *, now_ms: int | None = None) -> str:
    """YEAR-HHHHHHHH-BASE36TS, e.g. 2024-00000042-LZ3K9Q1A."""
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{year}-{household_id:08d}-{to_base36(ts)}".upper()


def statement_storage_key(church_id: int, year: int, household_id: int) -> str:
    return f"statements/{church_id}/{year}/household-{household_id}.pdf"


def statement_filename(st: GivingStatement) -> str:
    return f"giving-statement-{st.year}-{st.statement_number}.pdf"


def statement_to_dict(st: GivingStatement) -> dict[str, Any]:
    h = st.household
    return {
        "id": st.id,
        "householdId": st.household_id,
        "householdName": household_display_name(h) if h else None,
        "year": st.year,
        "startDate": iso(st.start_date),
        "endDate": iso(st.end_date),
        "totalAmount": money(st.total_amount),
        "statementNumber": st.statement_number,
        "generatedAt": iso(st.generated_at),
        "sentAt": iso(st.sent_at),
        "emailStatus": st.email_status,
        "emailError": st.email_error,
    }


def households_with_giving(s: Session, church_id: int, start: date, end: date) -> list[int]:
    rows = (
        s.query(Household.id)
        .join(Member, Member.household_id == Household.id)
        .join(Giving, Giving.member_id == Member.id)
        .filter(Household.church_id == church_id, Giving.date_given >= start, Giving.date_given <= end)
        .distinct()
        .order_by(Household.id.asc())
        .all()
    )
    return [hid for (hid,) in rows]


def statement_lines(s: Session, household_id: int, start: date, end: date) -> list[StatementLine]:
    rows = (
        s.query(Giving.date_given, GivingCategory.name, GivingItem.amount)
        .join(GivingItem, GivingItem.giving_id == Giving.id)
        .join(GivingCategory, GivingCategory.id == GivingItem.category_id)
        .join(Member, Member.id == Giving.member_id)
        .filter(Member.household_id == household_id, Giving.date_given >= start, Giving.date_given <= end)
        .order_by(Giving.date_given.asc(), GivingCategory.display_order.asc(), GivingCategory.name.asc())
        .all()
    )
    return [StatementLine(date_given=d, category_name=name, amount=amount) for d, name, amount in rows]


@dataclass
class BuiltStatement:
    household: Household
    household_name: str
    data: StatementData
    pdf_bytes: bytes


def build_statement(s: Session, church: Church, household: Household, year: int) -> BuiltStatement:
    start, end = date(year, 1, 1), date(year, 12, 31)
    lines = statement_lines(s, household.id, start, end)
    if not lines:
        raise ValueError("No giving records found for this period")
    name = household_display_name(household) or f"Household {household.id}"
    data = StatementData(
        church=church,
        household=household,
        household_name=name,
        year=year,
        start_date=start,
        end_date=end,
        statement_number=statement_number(year, household.id),
        generated_on=date.today(),
        lines=lines,
    )
    return BuiltStatement(household=household, household_name=name, data=data, pdf_bytes=render_statement_pdf(data))


@dataclass
class GenerateOutcome:
    body: dict[str, Any]
    preview_pdf: bytes | None = None
    preview_filename: str | None = None


def generate_statements(
    s: Session,
    church: Church,
    payload: dict[str, Any],
    *,
    user: User | None,
) -> GenerateOutcome:
    year = payload.get("year")
    if isinstance(year, bool) or parse_int(year) is None:
        raise ApiError("Year is required and must be a number")
    year = parse_int(year)
    if year < 1900 or year > 9999:
        raise ApiError("Year is out of range")
    preview = bool(payload.get("preview"))
    skip_validation = bool(payload.get("skipValidation"))

    missing = tax_info_warnings(church)
    if missing and not skip_validation:
        return GenerateOutcome(
            body={
                "requiresConfirmation": True,
                "missing": missing,
                "warnings": [f"{m} is not set" for m in missing],
                "message": f"The following fields are recommended for IRS-compliant statements: {', '.join(missing)}.",
            }
        )

    start, end = date(year, 1, 1), date(year, 12, 31)
    if payload.get("householdId") is not None:
        household_ids = [parse_int(payload.get("householdId"))]
        if household_ids[0] is None:
            raise ApiError("Invalid householdId")
    else:
        household_ids = households_with_giving(s, church.id, start, end)
    if not household_ids:
        raise NotFound("No giving records found", payload={"details": f"No households have giving records for {year}"})

    storage = storage_from_config(current_app.config)
    results: list[dict[str, Any]] = []
    errors: list[dict[str, Any]] = []

    for hid in household_ids:
        household = s.query(Household).filter(Household.id == hid, Household.church_id == church.id).one_or_none()
        if household is None:
            errors.append({"householdId": hid, "error": "Household not found"})
            continue
        try:
            built = build_statement(s, church, household, year)
        except ValueError as e:
            errors.append({"householdId": hid, "error": str(e)})
            continue

        number = built.data.statement_number
        total = built.data.total
        if preview:
            if len(household_ids) == 1:
                return GenerateOutcome(
                    body={},
                    preview_pdf=built.pdf_bytes,
                    preview_filename=f"giving-statement-{year}-preview.pdf",
                )
            results.append(
                {
                    "householdId": hid,
                    "householdName": built.household_name,
                    "statementNumber": number,
                    "totalAmount": money(total),
                    "status": "preview",
                }
            )
            continue

        key = statement_storage_key(church.id, year, hid)
        storage.put_bytes(key, built.pdf_bytes, content_type="application/pdf")

        st = (
            s.query(GivingStatement)
            .filter(GivingStatement.household_id == hid, GivingStatement.year == year)
            .one_or_none()
        )
        if st is not None:
            st.total_amount = total
            st.statement_number = number
            st.generated_at = datetime.utcnow()
            st.generated_by_user_id = user.id if user else None
            st.pdf_storage_key = key
            st.preview_only = False
            st.email_status = None
            st.email_error = None
            st.sent_at = None
            st.sent_by_user_id = None
            status = "updated"
        else:
            st = GivingStatement(
                church_id=church.id,
                household_id=hid,
                year=year,
                start_date=start,
                end_date=end,
                total_amount=total,
                statement_number=number,
                generated_by_user_id=user.id if user else None,
                pdf_storage_key=key,
                preview_only=False,
            )
            s.add(st)
            status = "created"
        s.flush()
        results.append(
            {
                "householdId": hid,
                "householdName": built.household_name,
                "statementId": st.id,
                "statementNumber": number,
                "totalAmount": money(total),
                "status": status,
            }
        )

    if not preview:
        record_event(
            s,
            actor=user,
            action="giving_statement.generate",
            church_id=church.id,
            entity_type="GivingStatement",
            metadata={"year": year, "generated": len(results), "errors": len(errors)},
        )
        s.commit()

    return GenerateOutcome(
        body={
            "success": True,
            "year": year,
            "preview": preview,
            "generated": len(results),
            "results": results,
            "errors": errors,
        }
    )


def get_statement(s: Session, church_id: int, statement_id: Any) -> GivingStatement:
    sid = parse_int(statement_id)
    st = None
    if sid is not None:
        st = (
            s.query(GivingStatement)
            .filter(GivingStatement.id == sid, GivingStatement.church_id == church_id)
            .one_or_none()
        )
    if st is None:
        raise NotFound("Statement not found")
    return st


def list_statements(s: Session, church_id: int, *, year: int | None = None) -> list[GivingStatement]:
    q = s.query(GivingStatement).filter(GivingStatement.church_id == church_id)
    if year is not None:
        q = q.filter(GivingStatement.year == year)
    return q.order_by(GivingStatement.year.desc(), GivingStatement.household_id.asc()).all()


def statement_pdf_bytes(s: Session, church: Church, st: GivingStatement) -> bytes:
    """Stored PDF, or a fresh render when the stored copy is missing."""
    storage = storage_from_config(current_app.config)
    if st.pdf_storage_key and storage.exists(st.pdf_storage_key):
        return storage.read_bytes(st.pdf_storage_key)

    logger.info("Statement %s PDF missing from storage; re-rendering", st.id)
    data = StatementData(
        church=church,
        household=st.household,
        household_name=household_display_name(st.household) or f"Household {st.household_id}",
        year=st.year,
        start_date=st.start_date,
        end_date=st.end_date,
        statement_number=st.statement_number,
        generated_on=(st.generated_at or datetime.utcnow()).date(),
        lines=statement_lines(s, st.household_id, st.start_date, st.end_date),
    )
    pdf_bytes = render_statement_pdf(data)
    key = st.pdf_storage_key or statement_storage_key(church.id, st.year, st.household_id)
    storage.put_bytes(key, pdf_bytes, content_type="application/pdf")
    st.pdf_storage_key = key
    return pdf_bytes


def delete_statement(s: Session, st: GivingStatement, *, user: User | None) -> None:
    record_event(
        s,
        actor=user,
        action="giving_statement.delete",
        church_id=st.church_id,
        entity_type="GivingStatement",
        entity_id=str(st.id),
        metadata={"year": st.year, "householdId": st.household_id},
    )
    if st.pdf_storage_key:
        storage = storage_from_config(current_app.config)
        if storage.exists(st.pdf_storage_key):
            storage.delete(st.pdf_storage_key)
    s.delete(st)


def recipient_email(s: Session, church_id: int, household_id: int) -> str | None:
    head = head_of_household(s, church_id, household_id)
    if head is not None and head.email1:
        return head.email1
    fallback = (
        s.query(Member)
        .filter(Member.church_id == church_id, Member.household_id == household_id, Member.email1.isnot(None))
        .order_by(Member.id.asc())
        .first()
    )
    return fallback.email1 if fallback else None


def send_statements(s: Session, church: Church, statement_ids: list[Any], *, user: User | None) -> dict[str, Any]:
    ids = [i for i in (parse_int(x) for x in statement_ids) if i is not None]
    statements = (
        s.query(GivingStatement)
        .filter(GivingStatement.church_id == church.id, GivingStatement.id.in_(ids))
        .order_by(GivingStatement.id.asc())
        .all()
        if ids
        else []
    )
    if not statements:
        raise NotFound("No statements found")

    results: list[dict[str, Any]] = []
    errors: list[dict[str, Any]] = []
    for st in statements:
        name = household_display_name(st.household) or f"Household {st.household_id}"
        email = recipient_email(s, church.id, st.household_id)
        if not email:
            st.email_status = "failed"
            st.email_error = "No contact email found for household"
            errors.append({"statementId": st.id, "householdName": name, "error": st.email_error})
            continue

        pdf_bytes = statement_pdf_bytes(s, church, st)
        ok, msg = send_giving_statement_email(
            email=email,
            household_name=name,
            church_name=church.name,
            year=st.year,
            pdf_bytes=pdf_bytes,
            filename=statement_filename(st),
        )
        if ok:
            st.email_status = "sent"
            st.email_error = None
            st.sent_at = datetime.utcnow()
            st.sent_by_user_id = user.id if user else None
            results.append({"statementId": st.id, "householdName": name, "email": email, "status": "sent"})
        else:
            st.email_status = "failed"
            st.email_error = msg
            errors.append({"statementId": st.id, "householdName": name, "error": msg or "Failed to send email"})

    record_event(
        s,
        actor=user,
        action="giving_statement.send",
        church_id=church.id,
        entity_type="GivingStatement",
        metadata={"sent": len(results), "failed": len(errors)},
    )
    s.commit()
    return {"success": True, "sent": len(results), "failed": len(errors), "results": results, "errors": errors}
