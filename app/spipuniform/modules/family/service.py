from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import Field, field_validator

from app.spipuniform.audit import record_event
from app.spipuniform.errors import NotFound, ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.family.models import FamilyMember
from app.spipuniform.modules.schools.models import School
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload

FIELDS = (
    "first_name",
    "last_name",
    "date_of_birth",
    "school_id",
    "school_year",
    "current_sizes",
    "growth_notes",
    "show_in_profile",
    "is_active",
)


class FamilyMemberPayload(Payload):
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    date_of_birth: date | None = None
    school_id: int | None = None
    school_year: str | None = Field(None, max_length=50)
    current_sizes: dict[str, str] | None = None
    growth_notes: str | None = None
    show_in_profile: bool | None = None
    is_active: bool | None = None

    @field_validator("current_sizes")
    @classmethod
    def _clean_sizes(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        if v is None:
            return v
        return {k.strip(): s.strip() for k, s in v.items() if k.strip() and s.strip()}

    @field_validator("date_of_birth")
    @classmethod
    def _not_future(cls, v: date | None) -> date | None:
        if v is not None and v > date.today():
            raise ValueError("Date of birth cannot be in the future")
        return v


def family_member_to_dict(m: FamilyMember) -> dict[str, Any]:
    return {
        "id": m.id,
        "first_name": m.first_name,
        "last_name": m.last_name,
        "date_of_birth": iso(m.date_of_birth),
        "school_id": m.school_id,
        "school_name": m.school.name if m.school else None,
        "school_year": m.school_year,
        "current_sizes": m.current_sizes or {},
        "growth_notes": m.growth_notes,
        "show_in_profile": m.show_in_profile,
        "is_active": m.is_active,
        "created_at": iso(m.created_at),
        "updated_at": iso(m.updated_at),
    }


def list_family_members(s, user: User, *, include_inactive: bool = True) -> list[FamilyMember]:
    q = s.query(FamilyMember).filter(FamilyMember.user_id == user.id)
    if not include_inactive:
        q = q.filter(FamilyMember.is_active.is_(True))
    return q.order_by(FamilyMember.first_name.asc(), FamilyMember.id.asc()).all()


def get_family_member(s, member_id: int, user: User) -> FamilyMember:
    m = s.get(FamilyMember, member_id)
    if not m or m.user_id != user.id:
        raise NotFound("Family member not found")
    return m


def _apply(s, m: FamilyMember, data: dict[str, Any]) -> list[str]:
    if "first_name" in data and not data["first_name"]:
        raise ValidationFailed("Validation failed", details={"first_name": "First name is required"})
    if data.get("school_id") is not None and not s.get(School, data["school_id"]):
        raise ValidationFailed("School not found", details={"school_id": "Unknown school"})
    for k in ("show_in_profile", "is_active"):
        if k in data and data[k] is None:
            raise ValidationFailed("Validation failed", details={k: "Must be true or false"})
    if "current_sizes" in data and data["current_sizes"] is None:
        data["current_sizes"] = {}
    changed = [k for k in FIELDS if k in data and getattr(m, k) != data[k]]
    for k in changed:
        setattr(m, k, data[k])
    return changed


def create_family_member(s, payload: FamilyMemberPayload, user: User) -> FamilyMember:
    data = payload.model_dump(exclude_unset=True)
    if not data.get("first_name"):
        raise ValidationFailed("Validation failed", details={"first_name": "First name is required"})
    now = datetime.utcnow()
    m = FamilyMember(user_id=user.id, current_sizes={}, show_in_profile=True, is_active=True, created_at=now, updated_at=now)
    _apply(s, m, data)
    s.add(m)
    s.flush()
    record_event(s, actor=user, action="family_member.create", entity_type="FamilyMember", entity_id=m.id)
    return m


def update_family_member(s, m: FamilyMember, payload: FamilyMemberPayload, user: User) -> FamilyMember:
    changed = _apply(s, m, payload.model_dump(exclude_unset=True))
    if changed:
        m.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="family_member.update",
            entity_type="FamilyMember",
            entity_id=m.id,
            metadata={"fields": changed},
        )
    return m


def delete_family_member(s, m: FamilyMember, user: User) -> None:
    record_event(s, actor=user, action="family_member.delete", entity_type="FamilyMember", entity_id=m.id)
    s.delete(m)
