from __future__ import annotations

import re
from datetime import date

from birthday_portal.models import DEFAULT_NOTIFICATION_DAYS

MAX_NAME_LENGTH = 100
MAX_NOTES_LENGTH = 500
MAX_CATEGORY_NAME_LENGTH = 50
MAX_TEMPLATE_LENGTH = 2000
MAX_NOTIFICATION_DAYS = 365
MIN_PASSWORD_LENGTH = 6
TEMPLATE_PLACEHOLDERS = ("{friendName}", "{birthDate}", "{age}", "{daysUntil}")

_EMAIL_PATTERN = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")
_COLOR_PATTERN = re.compile(r"#[0-9A-Fa-f]{6}")
_PLACEHOLDER_PATTERN = re.compile(r"\{[^{}]*\}")


class FormError(ValueError):
    pass


def parse_birth_date(raw_text: str, *, today: date | None = None) -> date:
    value = raw_text.strip()
    match = re.fullmatch(r"(\d{4})-(\d{2})-(\d{2})", value)
    if not match:
        raise FormError("Birth date must use YYYY-MM-DD")

    try:
        parsed = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError as exc:
        raise FormError(f"Invalid date: {value}") from exc

    if parsed > (today or date.today()):
        raise FormError("Birth date cannot be in the future")
    return parsed


def parse_friend_name(raw_text: str) -> str:
    name = raw_text.strip()
    if not name:
        raise FormError("Friend's name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise FormError(f"Friend's name must be at most {MAX_NAME_LENGTH} characters")
    return name


def parse_email(raw_text: str) -> str:
    email = raw_text.strip()
    if not _EMAIL_PATTERN.fullmatch(email):
        raise FormError("Please provide a valid email address")
    return email


def parse_notes(raw_text: str) -> str:
    notes = raw_text.strip()
    if len(notes) > MAX_NOTES_LENGTH:
        raise FormError(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters ({len(notes)} sent)")
    return notes


def parse_category_name(raw_text: str) -> str:
    name = raw_text.strip()
    if not name:
        raise FormError("Category name is required")
    if len(name) > MAX_CATEGORY_NAME_LENGTH:
        raise FormError(f"Category name must be at most {MAX_CATEGORY_NAME_LENGTH} characters")
    return name


def parse_color(raw_text: str) -> str:
    color = raw_text.strip()
    if not _COLOR_PATTERN.fullmatch(color):
        raise FormError("Color must be a valid hex color (e.g., #FF5733)")
    return color.upper()


def validate_registration(name: str, email: str, password: str, confirmation: str) -> tuple[str, str]:
    cleaned_name = name.strip()
    if not cleaned_name:
        raise FormError("Name is required")
    cleaned_email = parse_email(email)
    if password != confirmation:
        raise FormError("Passwords do not match")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise FormError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return cleaned_name, cleaned_email


def parse_notification_days(raw_text: str) -> tuple[list[int], bool]:
    text = raw_text.strip()
    if not text or text.lower() in {"skip", "default"}:
        return list(DEFAULT_NOTIFICATION_DAYS), True

    values: list[int] = []
    for token in text.split(","):
        cleaned = token.strip()
        if not cleaned:
            continue
        if not cleaned.isdigit():
            raise FormError("Days must be comma-separated non-negative integers")
        value = int(cleaned)
        if value > MAX_NOTIFICATION_DAYS:
            raise FormError(f"Days must be at most {MAX_NOTIFICATION_DAYS}")
        values.append(value)

    if not values:
        raise FormError("Provide at least one day or send default")

    return sorted(set(values), reverse=True), False


def parse_notification_time(raw_text: str) -> str:
    pieces = raw_text.strip().split(":")
    if len(pieces) != 2:
        raise FormError("Time must be in HH:MM format")

    hour, minute = pieces
    if not hour.isdigit() or not minute.isdigit():
        raise FormError("Time must contain numeric hour/minute")

    hour_i = int(hour)
    minute_i = int(minute)
    if hour_i > 23 or minute_i > 59:
        raise FormError("Time must be a valid 24-hour time")

    return f"{hour_i:02d}:{minute_i:02d}"


def format_time_label(value: str | None) -> str:
    try:
        hours, minutes = (int(piece) for piece in (value or "").split(":"))
    except ValueError:
        return "8:00 AM"
    period = "PM" if hours >= 12 else "AM"
    display_hour = hours % 12 or 12
    return f"{display_hour}:{minutes:02d} {period}"


def parse_email_template(raw_text: str) -> str:
    template = raw_text.strip()
    if not template:
        raise FormError("Template cannot be empty")
    if len(template) > MAX_TEMPLATE_LENGTH:
        raise FormError(f"Template cannot exceed {MAX_TEMPLATE_LENGTH} characters")

    unknown = [token for token in _PLACEHOLDER_PATTERN.findall(template) if token not in TEMPLATE_PLACEHOLDERS]
    if unknown:
        raise FormError(
            f"Unknown placeholder {unknown[0]}. Use {', '.join(TEMPLATE_PLACEHOLDERS)}"
        )
    return template


def format_notification_days(days: tuple[int, ...] | list[int]) -> str:
    if not days:
        return "none"
    labels: list[str] = []
    for day in days:
        if day == 0:
            labels.append("day-of")
        elif day == 1:
            labels.append("1 day before")
        else:
            labels.append(f"{day} days before")
    return ", ".join(labels)


def is_skip(value: str) -> bool:
    return value.strip().lower() in {"skip", "keep", "same", "-"}
