from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.steward.audit import record_event
from app.steward.constants import DEFAULT_GIVING_CATEGORIES, GUEST_ENVELOPE_NUMBER, GUEST_MEMBERSHIP_CODE
from app.steward.errors import ApiError, NotFound
from app.steward.models import Church, User
from app.steward.modules.attendance.service import get_service
from app.steward.modules.giving.models import Giving, GivingCategory, GivingItem
from app.steward.modules.members.models import Member
from app.steward.modules.members.service import head_of_household
from app.steward.utils import iso, money, normalize_text, parse_amount, parse_bool, parse_int, parse_iso_date

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def category_to_dict(c: GivingCategory) -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "displayOrder": c.display_order,
        "isActive": c.is_active,
    }


def list_categories(s: Session, church_id: int, *, active_only: bool = False) -> list[GivingCategory]:
    q = s.query(GivingCategory).filter(GivingCategory.church_id == church_id)
    if active_only:
        q = q.filter(GivingCategory.is_active.is_(True))
    return q.order_by(GivingCategory.display_order.asc(), GivingCategory.name.asc()).all()


def require_category(s: Session, church_id: int, category_id: Any) -> GivingCategory:
    cid = parse_int(category_id)
    c = None
    if cid is not None:
        c = s.query(GivingCategory).filter(GivingCategory.id == cid, GivingCategory.church_id == church_id).one_or_none()
    if c is None:
        raise NotFound("Category not found")
    return c


def _category_name_taken(s: Session, church_id: int, name: str, *, exclude_id: int | None = None) -> bool:
    q = s.query(GivingCategory.id).filter(
        GivingCategory.church_id == church_id,
        func.lower(GivingCategory.name) == name.lower(),
    )
    if exclude_id is not None:
        q = q.filter(GivingCategory.id != exclude_id)
    return q.first() is not None


def create_category(s: Session, church: Church, payload: dict[str, Any], *, user: User | None) -> GivingCategory:
    name = normalize_text(payload.get("name"))
    if not name:
        raise ApiError("Category name is required")
    if _category_name_taken(s, church.id, name):
        raise ApiError("A category with this name already exists")
    max_order = (
        s.query(func.max(GivingCategory.display_order)).filter(GivingCategory.church_id == church.id).scalar() or 0
    )
    c = GivingCategory(church_id=church.id, name=name, display_order=max_order + 1, is_active=True)
    s.add(c)
    s.flush()
    record_event(
        s,
        actor=user,
        action="giving_category.create",
        church_id=church.id,
        entity_type="GivingCategory",
        entity_id=str(c.id),
        metadata={"name": name},
    )
    return c


def update_category(s: Session, c: GivingCategory, payload: dict[str, Any], *, user: User | None) -> GivingCategory:
    if "name" in payload:
        name = normalize_text(payload.get("name"))
        if not name:
            raise ApiError("Category name is required")
        if _category_name_taken(s, c.church_id, name, exclude_id=c.id):
            raise ApiError("A category with this name already exists")
        c.name = name
    if "displayOrder" in payload:
        order = parse_int(payload.get("displayOrder"))
        if order is None:
            raise ApiError("displayOrder must be an integer")
        c.display_order = order
    if "isActive" in payload:
        c.is_active = parse_bool(payload.get("isActive"))
    c.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="giving_category.update",
        church_id=c.church_id,
        entity_type="GivingCategory",
        entity_id=str(c.id),
        metadata={"name": c.name, "isActive": c.is_active, "displayOrder": c.display_order},
    )
    return c


def delete_category(s: Session, c: GivingCategory, *, user: User | None) -> None:
    in_use = s.query(GivingItem.id).filter(GivingItem.category_id == c.id).first() is not None
    if in_use:
        raise ApiError("This category has giving recorded against it. Deactivate it instead.")
    record_event(
        s,
        actor=user,
        action="giving_category.delete",
        church_id=c.church_id,
        entity_type="GivingCategory",
        entity_id=str(c.id),
        metadata={"name": c.name},
    )
    s.delete(c)


def seed_default_categories(s: Session, church: Church) -> None:
    for name, order in DEFAULT_GIVING_CATEGORIES:
        s.add(GivingCategory(church_id=church.id, name=name, display_order=order, is_active=True))


# ---------------------------------------------------------------------------
# Giving records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GivingItemInput:
    category_id: int
    amount: Decimal


def giving_to_dict(gv: Giving, member: Member | None = None) -> dict[str, Any]:
    items = sorted(gv.items, key=lambda i: (i.category.display_order if i.category else 0, i.category_id))
    out: dict[str, Any] = {
        "id": gv.id,
        "memberId": gv.member_id,
        "dateGiven": iso(gv.date_given),
        "notes": gv.notes,
        "serviceId": gv.service_id,
        "items": [
            {
                "id": i.id,
                "categoryId": i.category_id,
                "categoryName": i.category.name if i.category else None,
                "amount": money(i.amount),
            }
            for i in items
        ],
        "total": money(gv.total),
        "createdAt": iso(gv.created_at),
    }
    if member is not None:
        out["memberName"] = member.full_name
        out["envelopeNumber"] = member.envelope_number
    return out


def get_giving(s: Session, church_id: int, giving_id: Any) -> Giving | None:
    gid = parse_int(giving_id)
    if gid is None:
        return None
    return (
        s.query(Giving)
        .join(Member, Member.id == Giving.member_id)
        .filter(Giving.id == gid, Member.church_id == church_id)
        .one_or_none()
    )


def require_giving(s: Session, church_id: int, giving_id: Any) -> Giving:
    gv = get_giving(s, church_id, giving_id)
    if gv is None:
        raise NotFound("Giving record not found")
    return gv


def list_giving_query(
    s: Session,
    church_id: int,
    *,
    member_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
):
    q = s.query(Giving, Member).join(Member, Member.id == Giving.member_id).filter(Member.church_id == church_id)
    if member_id is not None:
        q = q.filter(Giving.member_id == member_id)
    if start is not None:
        q = q.filter(Giving.date_given >= start)
    if end is not None:
        q = q.filter(Giving.date_given <= end)
    return q.order_by(Giving.date_given.desc(), Giving.id.desc())


def member_for_envelope(s: Session, church_id: int, envelope_number: int) -> Member | None:
    """
    Envelope 0 is the guest member. Any other envelope resolves to the head of
    house of the first matching member's household, falling back to that member.
    """
    if envelope_number == GUEST_ENVELOPE_NUMBER:
        return (
            s.query(Member)
            .filter(Member.church_id == church_id, Member.membership_code == GUEST_MEMBERSHIP_CODE)
            .order_by(Member.id.asc())
            .first()
        )
    first = (
        s.query(Member)
        .filter(Member.church_id == church_id, Member.envelope_number == envelope_number)
        .order_by(Member.id.asc())
        .first()
    )
    if first is None or first.household_id is None:
        return first
    return head_of_household(s, church_id, first.household_id) or first


def parse_items(s: Session, church_id: int, raw_items: Any) -> list[GivingItemInput]:
    """
    Validate item payloads. Zero and empty amounts are dropped; at least one
    positive amount must remain.
    """
    if not isinstance(raw_items, list):
        raise ApiError("items must be a list")
    out: list[GivingItemInput] = []
    seen: set[int] = set()
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ApiError("Each item must be an object with categoryId and amount")
        raw_amount = raw.get("amount")
        if raw_amount is None or str(raw_amount).strip() == "":
            continue
        amount = parse_amount(raw_amount)
        if amount is None:
            raise ApiError(f"Invalid amount: {raw_amount}")
        if amount < ZERO:
            raise ApiError("Amounts cannot be negative")
        if amount == ZERO:
            continue
        category_id = parse_int(raw.get("categoryId"))
        if category_id is None:
            raise ApiError("Each item requires a categoryId")
        if category_id in seen:
            raise ApiError("Each category may appear only once per giving record")
        seen.add(category_id)
        out.append(GivingItemInput(category_id=category_id, amount=amount))

    if not out:
        raise ApiError("At least one giving amount greater than zero is required")

    ids = {i.category_id for i in out}
    found = {
        cid
        for (cid,) in s.query(GivingCategory.id).filter(
            GivingCategory.church_id == church_id, GivingCategory.id.in_(ids)
        )
    }
    if found != ids:
        raise ApiError("Invalid category for this church")
    return out


def resolve_giving_member(s: Session, church_id: int, payload: dict[str, Any]) -> Member:
    member_id = parse_int(payload.get("memberId"))
    envelope = payload.get("envelopeNumber")
    if member_id is None and (envelope is None or str(envelope).strip() == ""):
        raise ApiError("memberId or envelopeNumber is required")

    if member_id is not None:
        m = s.query(Member).filter(Member.id == member_id, Member.church_id == church_id).one_or_none()
        if m is None:
            raise NotFound("Member not found")
        return m

    envelope_number = parse_int(envelope)
    if envelope_number is None:
        raise ApiError(f"Invalid envelope number: {envelope}")
    m = member_for_envelope(s, church_id, envelope_number)
    if m is None:
        if envelope_number == GUEST_ENVELOPE_NUMBER:
            raise NotFound("Guest member not found. Create a member with membership code GUEST for loose-plate giving.")
        raise NotFound(f"No member found with envelope number {envelope_number}")
    return m


def _resolve_service_id(s: Session, church_id: int, raw: Any) -> int | None:
    if raw is None or str(raw).strip() == "":
        return None
    svc = get_service(s, church_id, raw)
    if svc is None:
        raise ApiError("Service not found")
    return svc.id


def create_giving(s: Session, church: Church, payload: dict[str, Any], *, user: User | None) -> Giving:
    member = resolve_giving_member(s, church.id, payload)
    if not payload.get("dateGiven"):
        raise ApiError("dateGiven is required")
    date_given = parse_iso_date(payload.get("dateGiven"))
    if date_given is None:
        raise ApiError("Invalid dateGiven. Use YYYY-MM-DD.")
    items = parse_items(s, church.id, payload.get("items"))
    service_id = _resolve_service_id(s, church.id, payload.get("serviceId"))

    gv = Giving(
        member_id=member.id,
        date_given=date_given,
        notes=normalize_text(payload.get("notes")),
        service_id=service_id,
    )
    gv.items = [GivingItem(category_id=i.category_id, amount=i.amount) for i in items]
    s.add(gv)
    s.flush()
    record_event(
        s,
        actor=user,
        action="giving.create",
        church_id=church.id,
        entity_type="Giving",
        entity_id=str(gv.id),
        metadata={"memberId": member.id, "total": money(sum((i.amount for i in items), ZERO))},
    )
    return gv


def update_giving(s: Session, church: Church, gv: Giving, payload: dict[str, Any], *, user: User | None) -> Giving:
    if "memberId" in payload or "envelopeNumber" in payload:
        gv.member_id = resolve_giving_member(s, church.id, payload).id
    if "dateGiven" in payload:
        date_given = parse_iso_date(payload.get("dateGiven"))
        if date_given is None:
            raise ApiError("Invalid dateGiven. Use YYYY-MM-DD.")
        gv.date_given = date_given
    if "notes" in payload:
        gv.notes = normalize_text(payload.get("notes"))
    if "serviceId" in payload:
        gv.service_id = _resolve_service_id(s, church.id, payload.get("serviceId"))
    if "items" in payload:
        items = parse_items(s, church.id, payload.get("items"))
        gv.items.clear()
        s.flush()
        gv.items.extend(GivingItem(category_id=i.category_id, amount=i.amount) for i in items)
    gv.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="giving.update",
        church_id=church.id,
        entity_type="Giving",
        entity_id=str(gv.id),
        metadata={"total": money(gv.total)},
    )
    return gv


def delete_giving(s: Session, church: Church, gv: Giving, *, user: User | None) -> None:
    record_event(
        s,
        actor=user,
        action="giving.delete",
        church_id=church.id,
        entity_type="Giving",
        entity_id=str(gv.id),
        metadata={"memberId": gv.member_id, "total": money(gv.total)},
    )
    s.delete(gv)


def bulk_input(s: Session, church: Church, entries: list[Any], *, user: User | None) -> dict[str, Any]:
    """
    Record a batch of giving entries from the envelope entry grid.
    Each entry is validated like a single create; failures are reported per entry.
    """
    results: dict[str, Any] = {"success": 0, "failed": 0, "errors": []}
    for i, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            results["failed"] += 1
            results["errors"].append(f"Entry {i}: must be an object")
            continue
        try:
            create_giving(s, church, entry, user=user)
            s.commit()
            results["success"] += 1
        except ApiError as e:
            s.rollback()
            results["failed"] += 1
            results["errors"].append(f"Entry {i}: {e.message}")
    return results

