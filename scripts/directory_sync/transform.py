"""Flatten SCIM user resources into rows for the warehouse schema."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional, Union


@dataclass(frozen=True)
class TargetRow:
    id: str
    userName: Optional[str] = None
    givenName: Optional[str] = None
    familyName: Optional[str] = None
    email: Optional[str] = None
    active: bool = False
    created: Optional[str] = None
    lastModified: Optional[str] = None

    def to_record(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TransformFailure:
    record_id: Optional[str]
    reason: str


@dataclass
class TransformResult:
    rows: list[TargetRow] = field(default_factory=list)
    failures: list[TransformFailure] = field(default_factory=list)

    @property
    def dropped(self) -> int:
        return len(self.failures)


def _as_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class _InvalidField(ValueError):
    pass


def _optional_str(value: Any, field_name: str) -> Optional[str]:
    # STRING and TIMESTAMP columns only accept JSON strings or null.
    if value is None or isinstance(value, str):
        return value
    raise _InvalidField(f"{field_name} must be a string, got {type(value).__name__}")


def _first_email(emails: Any) -> Optional[str]:
    # Only a list shape carries emails; anything else drops the field.
    if not isinstance(emails, list) or not emails:
        return None
    first = emails[0]
    if not isinstance(first, dict):
        return None
    return _optional_str(first.get("value"), "emails[0].value")


def transform_user(raw: Any) -> Union[TargetRow, TransformFailure]:
    """Map one SCIM user resource to a TargetRow, or a TransformFailure."""
    if not isinstance(raw, dict):
        return TransformFailure(None, f"expected an object, got {type(raw).__name__}")

    user_id = raw.get("id")
    if user_id is None or user_id == "":
        return TransformFailure(None, "record has no id")
    # bool is an int subclass but never a valid id
    if isinstance(user_id, bool) or not isinstance(user_id, (str, int)):
        return TransformFailure(None, f"id must be a string, got {type(user_id).__name__}")
    user_id = str(user_id)

    try:
        name = raw.get("name") or {}
        meta = raw.get("meta") or {}
        return TargetRow(
            id=user_id,
            userName=_optional_str(raw.get("userName"), "userName"),
            givenName=_optional_str(name.get("givenName"), "name.givenName"),
            familyName=_optional_str(name.get("familyName"), "name.familyName"),
            email=_first_email(raw.get("emails")),
            active=_as_bool(raw.get("active")),
            created=_optional_str(meta.get("created"), "meta.created"),
            lastModified=_optional_str(meta.get("lastModified"), "meta.lastModified"),
        )
    except _InvalidField as exc:
        return TransformFailure(user_id, str(exc))
    except (AttributeError, TypeError, ValueError) as exc:
        return TransformFailure(user_id, f"{type(exc).__name__}: {exc}")


def transform_users(records: Iterable[Any]) -> TransformResult:
    """Transform a batch; failed records are collected, never raised."""
    result = TransformResult()
    for raw in records:
        outcome = transform_user(raw)
        if isinstance(outcome, TransformFailure):
            result.failures.append(outcome)
        else:
            result.rows.append(outcome)
    return result
