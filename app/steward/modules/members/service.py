from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.steward.audit import record_event
from app.steward.constants import (
    HOUSEHOLD_TYPES,
    PARTICIPATION_STATUSES,
    RECEIVED_BY_VALUES,
    REMOVED_BY_VALUES,
    SEQUENCE_VALUES,
    SEX_VALUES,
)
from app.steward.errors import ApiError, NotFound
from app.steward.models import Church, User
from app.steward.modules.members.models import Household, Member, MembershipHistory
from app.steward.rbac import check_member_limit
from app.steward.utils import iso, normalize_email, normalize_text, parse_bool, parse_int, parse_iso_date


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


# camelCase payload key -> (column, kind)
MEMBER_FIELDS: dict[str, tuple[str, str]] = {
    "firstName": ("first_name", "text"),
    "middleName": ("middle_name", "text"),
    "lastName": ("last_name", "text"),
    "suffix": ("suffix", "text"),
    "preferredName": ("preferred_name", "text"),
    "maidenName": ("maiden_name", "text"),
    "title": ("title", "text"),
    "sex": ("sex", "sex"),
    "dateOfBirth": ("date_of_birth", "date"),
    "email1": ("email1", "email"),
    "email2": ("email2", "email"),
    "phoneHome": ("phone_home", "text"),
    "phoneCell1": ("phone_cell1", "text"),
    "phoneCell2": ("phone_cell2", "text"),
    "baptismDate": ("baptism_date", "date"),
    "confirmationDate": ("confirmation_date", "date"),
    "receivedBy": ("received_by", "received_by"),
    "dateReceived": ("date_received", "date"),
    "removedBy": ("removed_by", "removed_by"),
    "dateRemoved": ("date_removed", "date"),
    "deceasedDate": ("deceased_date", "date"),
    "membershipCode": ("membership_code", "text"),
    "envelopeNumber": ("envelope_number", "int"),
    "sequence": ("sequence", "sequence"),
}

HOUSEHOLD_FIELDS: dict[str, tuple[str, str]] = {
    "name": ("name", "text"),
    "type": ("type", "household_type"),
    "isNonHousehold": ("is_non_household", "bool"),
    "personAssigned": ("person_assigned", "text"),
    "ministryGroup": ("ministry_group", "text"),
    "address1": ("address1", "text"),
    "address2": ("address2", "text"),
    "city": ("city", "text"),
    "state": ("state", "text"),
    "zip": ("zip", "text"),
    "country": ("country", "text"),
    "alternateAddressBegin": ("alternate_address_begin", "date"),
    "alternateAddressEnd": ("alternate_address_end", "date"),
}

_ENUMS: dict[str, tuple[str, ...]] = {
    "sex": SEX_VALUES,
    "received_by": RECEIVED_BY_VALUES,
    "removed_by": REMOVED_BY_VALUES,
    "sequence": SEQUENCE_VALUES,
    "household_type": HOUSEHOLD_TYPES,
    "participation": PARTICIPATION_STATUSES,
}

# Changes to these columns are written to membership_history.
TRACKED_FIELDS = ("participation", "household_id", "received_by", "removed_by", "date_removed", "deceased_date")


def normalize_enum(value: Any, allowed: tuple[str, ...]) -> str | None:
    """'Head Of House' -> 'head_of_house'; unknown values -> None."""
    s = normalize_text(value)
    if not s:
        return None
    key = "_".join(s.lower().split())
    return key if key in allowed else None


def coerce_field(kind: str, value: Any) -> Any:
    if kind == "text":
        return normalize_text(value)
    if kind == "email":
        return normalize_email(value)
    if kind == "date":
        return parse_iso_date(value)
    if kind == "int":
        return parse_int(value)
    if kind == "bool":
        return parse_bool(value)
    return normalize_enum(value, _ENUMS[kind])


def _apply_fields(obj: Any, payload: dict[str, Any], fields: dict[str, tuple[str, str]]) -> None:
    for key, (column, kind) in fields.items():
        if key in payload:
            setattr(obj, column, coerce_field(kind, payload[key]))


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def household_display_name(h: Household, members: list[Member] | None = None) -> str | None:
    if h.name:
        return h.name
    ms = members if members is not None else list(h.members)
    if not ms:
        return None
    if len(ms) == 1:
        return f"{ms[0].first_name} {ms[0].last_name}"
    if len(ms) == 2:
        return f"{ms[0].first_name} & {ms[1].first_name} {ms[1].last_name}"
    return f"{ms[0].first_name} {ms[0].last_name} (+{len(ms) - 1})"


def household_to_dict(h: Household, *, include_members: bool = False) -> dict[str, Any]:
    d: dict[str, Any] = {"id": h.id}
    for key, (column, _kind) in HOUSEHOLD_FIELDS.items():
        value = getattr(h, column)
        d[key] = iso(value) if hasattr(value, "isoformat") else value
    d["displayName"] = household_display_name(h)
    d["memberCount"] = len(h.members)
    d["createdAt"] = iso(h.created_at)
    d["updatedAt"] = iso(h.updated_at)
    if include_members:
        d["members"] = [member_to_dict(m) for m in h.members]
    return d


def member_to_dict(m: Member) -> dict[str, Any]:
    d: dict[str, Any] = {"id": m.id, "householdId": m.household_id}
    for key, (column, _kind) in MEMBER_FIELDS.items():
        value = getattr(m, column)
        d[key] = iso(value) if hasattr(value, "isoformat") else value
    d["participation"] = m.participation
    d["householdName"] = m.household.name if m.household else None
    d["createdAt"] = iso(m.created_at)
    d["updatedAt"] = iso(m.updated_at)
    return d


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_household(s: Session, church_id: int, household_id: Any) -> Household | None:
    hid = parse_int(household_id)
    if hid is None:
        return None
    return s.query(Household).filter(Household.id == hid, Household.church_id == church_id).one_or_none()


def get_member(s: Session, church_id: int, member_id: Any) -> Member | None:
    mid = parse_int(member_id)
    if mid is None:
        return None
    return s.query(Member).filter(Member.id == mid, Member.church_id == church_id).one_or_none()


def require_member(s: Session, church_id: int, member_id: Any) -> Member:
    m = get_member(s, church_id, member_id)
    if m is None:
        raise NotFound("Member not found")
    return m


def require_household(s: Session, church_id: int, household_id: Any) -> Household:
    h = get_household(s, church_id, household_id)
    if h is None:
        raise NotFound("Household not found")
    return h


def email_in_use(s: Session, church_id: int, email: str, *, exclude_member_id: int | None = None) -> bool:
    q = s.query(Member.id).filter(Member.church_id == church_id, func.lower(Member.email1) == email.lower())
    if exclude_member_id is not None:
        q = q.filter(Member.id != exclude_member_id)
    return q.first() is not None


def head_of_household(s: Session, church_id: int, household_id: int) -> Member | None:
    return (
        s.query(Member)
        .filter(
            Member.church_id == church_id,
            Member.household_id == household_id,
            Member.sequence == "head_of_house",
        )
        .order_by(Member.id.asc())
        .first()
    )


def list_members_query(
    s: Session,
    church_id: int,
    *,
    q: str | None = None,
    household_id: int | None = None,
    participation: str | None = None,
):
    query = s.query(Member).filter(Member.church_id == church_id)
    if q:
        like = f"%{q}%"
        query = query.filter(
            or_(
                Member.first_name.ilike(like),
                Member.last_name.ilike(like),
                Member.preferred_name.ilike(like),
                Member.email1.ilike(like),
            )
        )
    if household_id is not None:
        query = query.filter(Member.household_id == household_id)
    if participation:
        query = query.filter(Member.participation == participation)
    return query.order_by(Member.last_name.asc(), Member.first_name.asc(), Member.id.asc())


# ---------------------------------------------------------------------------
# Households
# ---------------------------------------------------------------------------


def validate_household_payload(payload: dict[str, Any]) -> list[ValidationError]:
    errors: list[ValidationError] = []
    raw_type = payload.get("type")
    if normalize_text(raw_type) and normalize_enum(raw_type, HOUSEHOLD_TYPES) is None:
        errors.append(ValidationError("type", f"Type must be one of: {', '.join(HOUSEHOLD_TYPES)}"))
    return errors


def create_household(s: Session, church: Church, payload: dict[str, Any], *, user: User | None) -> Household:
    errors = validate_household_payload(payload)
    if errors:
        raise ApiError("; ".join(f"{e.field}: {e.message}" for e in errors))
    h = Household(church_id=church.id)
    _apply_fields(h, payload, HOUSEHOLD_FIELDS)
    if h.type is None:
        h.type = "single"
    s.add(h)
    s.flush()
    record_event(
        s,
        actor=user,
        action="household.create",
        church_id=church.id,
        entity_type="Household",
        entity_id=str(h.id),
        metadata={"name": h.name},
    )
    return h


def update_household(s: Session, h: Household, payload: dict[str, Any], *, user: User | None) -> Household:
    errors = validate_household_payload(payload)
    if errors:
        raise ApiError("; ".join(f"{e.field}: {e.message}" for e in errors))
    before = {c: getattr(h, c) for c, _ in HOUSEHOLD_FIELDS.values()}
    _apply_fields(h, payload, HOUSEHOLD_FIELDS)
    h.updated_at = datetime.utcnow()
    changed = {c: {"old": before[c], "new": getattr(h, c)} for c in before if before[c] != getattr(h, c)}
    record_event(
        s,
        actor=user,
        action="household.update",
        church_id=h.church_id,
        entity_type="Household",
        entity_id=str(h.id),
        metadata={"changed": changed} if changed else None,
    )
    return h


def delete_household(s: Session, h: Household, *, user: User | None) -> None:
    for m in list(h.members):
        m.household_id = None
    record_event(
        s,
        actor=user,
        action="household.delete",
        church_id=h.church_id,
        entity_type="Household",
        entity_id=str(h.id),
        metadata={"name": h.name, "detached_members": len(h.members)},
    )
    s.delete(h)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


def validate_member_payload(payload: dict[str, Any], *, partial: bool = False) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not partial or "firstName" in payload:
        if not normalize_text(payload.get("firstName")):
            errors.append(ValidationError("firstName", "First name is required"))
    if not partial or "lastName" in payload:
        if not normalize_text(payload.get("lastName")):
            errors.append(ValidationError("lastName", "Last name is required"))
    for key in ("sex", "receivedBy", "removedBy", "sequence"):
        raw = payload.get(key)
        column, kind = MEMBER_FIELDS[key]
        if normalize_text(raw) and normalize_enum(raw, _ENUMS[kind]) is None:
            errors.append(ValidationError(key, f"Invalid value: {raw}"))
    return errors


def _raise_first(errors: list[ValidationError]) -> None:
    if errors:
        raise ApiError(errors[0].message, payload={"errors": [e.__dict__ for e in errors]})


def create_member(s: Session, church: Church, payload: dict[str, Any], *, user: User | None) -> Member:
    _raise_first(validate_member_payload(payload))

    create_new_household = parse_bool(payload.get("createNewHousehold"))
    household_id = payload.get("householdId")
    if not household_id and not create_new_household:
        raise ApiError("Household is required. Select an existing household or create a new one.")

    raw_participation = payload.get("participation")
    participation = "active"
    if normalize_text(raw_participation):
        participation = normalize_enum(raw_participation, PARTICIPATION_STATUSES)  # type: ignore[assignment]
        if participation is None:
            raise ApiError(f"Invalid participation status. Must be one of: {', '.join(PARTICIPATION_STATUSES)}")

    email1 = normalize_email(payload.get("email1"))
    if email1 and email_in_use(s, church.id, email1):
        raise ApiError("Email already exists")

    limit = check_member_limit(s, church)
    if not limit.allowed:
        raise ApiError(
            f"Member limit reached. Your {limit.plan} plan allows up to {limit.limit} members. "
            "Upgrade to Premium for unlimited members.",
            status_code=403,
            payload={"limit": limit.to_dict()},
        )

    if create_new_household:
        first = normalize_text(payload.get("firstName"))
        last = normalize_text(payload.get("lastName"))
        household = create_household(
            s,
            church,
            {
                "name": normalize_text(payload.get("householdName")) or f"{first} {last}",
                "type": payload.get("householdType") or "single",
            },
            user=user,
        )
    else:
        household = get_household(s, church.id, household_id)
        if household is None:
            raise ApiError("Selected household does not exist")

    m = Member(church_id=church.id, household_id=household.id, participation=participation)
    _apply_fields(m, payload, MEMBER_FIELDS)
    s.add(m)
    s.flush()
    record_event(
        s,
        actor=user,
        action="member.create",
        church_id=church.id,
        entity_type="Member",
        entity_id=str(m.id),
        metadata={"name": m.full_name, "household_id": household.id},
    )
    return m


def update_member(s: Session, church: Church, m: Member, payload: dict[str, Any], *, user: User | None) -> Member:
    _raise_first(validate_member_payload(payload, partial=True))

    email1 = normalize_email(payload.get("email1")) if "email1" in payload else m.email1
    if email1 and email1 != (m.email1 or "").lower() and email_in_use(s, church.id, email1, exclude_member_id=m.id):
        raise ApiError("Email already exists")

    new_household_id = m.household_id
    if "householdId" in payload:
        new_household_id = parse_int(payload.get("householdId"))
    if not new_household_id:
        raise ApiError("Household is required. All members must belong to a household.")
    if new_household_id != m.household_id and get_household(s, church.id, new_household_id) is None:
        raise ApiError("Selected household does not exist")

    before = {f: getattr(m, f) for f in TRACKED_FIELDS}

    _apply_fields(m, payload, MEMBER_FIELDS)
    m.household_id = new_household_id
    if "participation" in payload:
        participation = normalize_enum(payload.get("participation"), PARTICIPATION_STATUSES)
        if participation is not None:
            m.participation = participation
    m.updated_at = datetime.utcnow()

    notes = normalize_text(payload.get("changeNotes"))
    for field in TRACKED_FIELDS:
        old, new = before[field], getattr(m, field)
        if old != new:
            s.add(
                MembershipHistory(
                    member_id=m.id,
                    field_changed=field,
                    old_value=None if old is None else str(old),
                    new_value=None if new is None else str(new),
                    changed_by_user_id=user.id if user else None,
                    notes=notes,
                )
            )
    record_event(
        s,
        actor=user,
        action="member.update",
        church_id=church.id,
        entity_type="Member",
        entity_id=str(m.id),
        metadata={
            "changed": {f: {"old": before[f], "new": getattr(m, f)} for f in TRACKED_FIELDS if before[f] != getattr(m, f)}
        },
    )
    return m


def delete_member(s: Session, m: Member, *, user: User | None) -> None:
    record_event(
        s,
        actor=user,
        action="member.delete",
        church_id=m.church_id,
        entity_type="Member",
        entity_id=str(m.id),
        metadata={"name": m.full_name},
    )
    s.delete(m)


def member_history(s: Session, m: Member) -> list[MembershipHistory]:
    return (
        s.query(MembershipHistory)
        .filter(MembershipHistory.member_id == m.id)
        .order_by(MembershipHistory.changed_at.desc(), MembershipHistory.id.desc())
        .all()
    )


def history_to_dict(h: MembershipHistory) -> dict[str, Any]:
    return {
        "id": h.id,
        "memberId": h.member_id,
        "fieldChanged": h.field_changed,
        "oldValue": h.old_value,
        "newValue": h.new_value,
        "changedAt": iso(h.changed_at),
        "changedBy": h.changed_by_user_id,
        "notes": h.notes,
    }
