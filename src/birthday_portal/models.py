from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any


DEFAULT_NOTIFICATION_DAYS = [7, 3, 1]
DEFAULT_NOTIFICATION_TIME = "08:00"
MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class BirthdayRecord:
    id: int
    friend_name: str
    birth_date: date
    age: int
    days_until_birthday: int
    upcoming_birthday: date
    category_id: int | None = None
    category_name: str | None = None
    category_color: str | None = None
    friend_email: str | None = None
    notes: str | None = None
    is_active: bool = True

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> BirthdayRecord:
        return cls(
            id=int(data["id"]),
            friend_name=str(data.get("friendName", "")),
            birth_date=date.fromisoformat(str(data["birthDate"])),
            age=int(data.get("age") or 0),
            days_until_birthday=int(data.get("daysUntilBirthday") or 0),
            upcoming_birthday=date.fromisoformat(str(data["upcomingBirthday"])),
            category_id=_optional_int(data.get("categoryId")),
            category_name=_optional_str(data.get("categoryName")),
            category_color=_optional_str(data.get("categoryColor")),
            friend_email=_optional_str(data.get("friendEmail")),
            notes=_optional_str(data.get("notes")),
            is_active=bool(data.get("isActive", True)),
        )


@dataclass(frozen=True)
class BirthdayDraft:
    """Fields sent to the backend when creating or updating a birthday."""

    friend_name: str
    birth_date: date
    friend_email: str | None = None
    notes: str | None = None
    category_id: int | None = None
    is_active: bool = True

    @classmethod
    def from_record(cls, record: BirthdayRecord) -> BirthdayDraft:
        return cls(
            friend_name=record.friend_name,
            birth_date=record.birth_date,
            friend_email=record.friend_email,
            notes=record.notes,
            category_id=record.category_id,
            is_active=record.is_active,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "friendName": self.friend_name,
            "birthDate": self.birth_date.isoformat(),
            "friendEmail": self.friend_email,
            "notes": self.notes,
            "categoryId": self.category_id,
            "isActive": self.is_active,
        }


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    color: str | None = None
    icon: str | None = None
    birthday_count: int = 0

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Category:
        return cls(
            id=int(data["id"]),
            name=str(data.get("name", "")),
            color=_optional_str(data.get("color")),
            icon=_optional_str(data.get("icon")),
            birthday_count=int(data.get("birthdayCount") or 0),
        )

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "color": self.color, "icon": self.icon}


@dataclass(frozen=True)
class NotificationSettings:
    notification_days: tuple[int, ...] = tuple(DEFAULT_NOTIFICATION_DAYS)
    email_enabled: bool = True
    email_template: str = ""
    notification_time: str = DEFAULT_NOTIFICATION_TIME

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> NotificationSettings:
        days = data.get("notificationDays")
        if days is None:
            days = DEFAULT_NOTIFICATION_DAYS
        return cls(
            notification_days=tuple(sorted({int(value) for value in days}, reverse=True)),
            email_enabled=bool(data.get("emailEnabled", True)),
            email_template=str(data.get("emailTemplate") or ""),
            notification_time=str(data.get("notificationTime") or DEFAULT_NOTIFICATION_TIME),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "notificationDays": list(self.notification_days),
            "emailEnabled": self.email_enabled,
            "emailTemplate": self.email_template,
            "notificationTime": self.notification_time,
        }


@dataclass(frozen=True)
class AuthResult:
    token: str
    user_id: int
    email: str
    name: str

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> AuthResult:
        token = str(data.get("token") or "")
        if not token:
            raise ValueError("Authentication response did not include a token")
        return cls(
            token=token,
            user_id=int(data["userId"]),
            email=str(data.get("email", "")),
            name=str(data.get("name", "")),
        )


@dataclass(frozen=True)
class Analytics:
    monthly_distribution: dict[str, int]
    category_distribution: dict[str, int]
    upcoming_in_7_days: int

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Analytics:
        raw_monthly = data.get("monthlyDistribution") or {}
        monthly = {month: int(raw_monthly.get(month, 0)) for month in MONTH_NAMES}
        categories = {
            str(name): int(count) for name, count in (data.get("categoryDistribution") or {}).items()
        }
        return cls(
            monthly_distribution=monthly,
            category_distribution=categories,
            upcoming_in_7_days=int(data.get("upcomingIn7Days") or 0),
        )


@dataclass(frozen=True)
class ImportOutcome:
    imported_count: int
    error_count: int
    errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def needs_refresh(self) -> bool:
        return self.imported_count > 0

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ImportOutcome:
        errors = tuple(str(message) for message in (data.get("errors") or []))
        imported_count = int(data.get("importedCount") or 0)
        error_count = int(data.get("errorCount") if data.get("errorCount") is not None else len(errors))
        if imported_count < 0 or error_count < 0:
            raise ValueError("Import counts must be non-negative")
        return cls(imported_count=imported_count, error_count=error_count, errors=errors)


@dataclass(frozen=True)
class ToneOption:
    value: str
    label: str
    description: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ToneOption:
        return cls(
            value=str(data.get("value", "")),
            label=str(data.get("label", "")),
            description=str(data.get("description") or ""),
        )
