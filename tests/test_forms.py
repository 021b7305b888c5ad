from datetime import date

import pytest

from birthday_portal.forms import (
    FormError,
    format_notification_days,
    format_time_label,
    parse_birth_date,
    parse_color,
    parse_email_template,
    parse_notes,
    parse_notification_days,
    parse_notification_time,
    validate_registration,
)


def test_parse_birth_date_full_date() -> None:
    assert parse_birth_date("1990-03-14", today=date(2026, 10, 19)) == date(1990, 3, 14)


def test_parse_birth_date_rejects_impossible_date() -> None:
    with pytest.raises(FormError):
        parse_birth_date("2025-02-29", today=date(2026, 10, 19))


def test_parse_birth_date_rejects_future() -> None:
    with pytest.raises(FormError, match="future"):
        parse_birth_date("2026-10-20", today=date(2026, 10, 19))


def test_parse_birth_date_requires_year() -> None:
    with pytest.raises(FormError):
        parse_birth_date("03-14", today=date(2026, 10, 19))


def test_registration_passwords_must_match() -> None:
    with pytest.raises(FormError, match="do not match"):
        validate_registration("Ann", "ann@example.com", "secret1", "secret2")


def test_registration_password_length() -> None:
    with pytest.raises(FormError, match="at least 6"):
        validate_registration("Ann", "ann@example.com", "abc", "abc")


def test_registration_returns_cleaned_fields() -> None:
    assert validate_registration(" Ann ", " ann@example.com ", "secret1", "secret1") == (
        "Ann",
        "ann@example.com",
    )


def test_notification_days_blank_uses_default() -> None:
    days, used_default = parse_notification_days("  ")
    assert days == [7, 3, 1]
    assert used_default is True


def test_notification_days_sorts_and_dedupes() -> None:
    days, used_default = parse_notification_days("1,7,1,0")
    assert days == [7, 1, 0]
    assert used_default is False


def test_notification_days_rejects_negative() -> None:
    with pytest.raises(FormError):
        parse_notification_days("7,-1")


def test_notification_time_normalizes() -> None:
    assert parse_notification_time("8:05") == "08:05"


def test_notification_time_rejects_out_of_range() -> None:
    with pytest.raises(FormError):
        parse_notification_time("24:00")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("08:00", "8:00 AM"),
        ("00:15", "12:15 AM"),
        ("12:00", "12:00 PM"),
        ("18:45", "6:45 PM"),
        (None, "8:00 AM"),
        ("garbage", "8:00 AM"),
    ],
)
def test_format_time_label(value: str | None, expected: str) -> None:
    assert format_time_label(value) == expected


def test_format_notification_days() -> None:
    assert format_notification_days((7, 1, 0)) == "7 days before, 1 day before, day-of"


def test_email_template_accepts_known_placeholders() -> None:
    template = "Hey! {friendName} turns {age} on {birthDate} ({daysUntil} days)"
    assert parse_email_template(template) == template


def test_email_template_rejects_unknown_placeholder() -> None:
    with pytest.raises(FormError, match="{nickname}"):
        parse_email_template("Hi {nickname}")


def test_notes_length_limit() -> None:
    with pytest.raises(FormError):
        parse_notes("x" * 501)


def test_color_must_be_hex() -> None:
    assert parse_color("#ec4899") == "#EC4899"
    with pytest.raises(FormError):
        parse_color("pink")
