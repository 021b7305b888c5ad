from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from birthday_portal.models import BirthdayRecord, Category

UPCOMING_WINDOW_DAYS = 30
UPCOMING_KEYWORDS = {"upcoming", "soon"}


class Urgency(str, Enum):
    TODAY = "today"
    TOMORROW = "tomorrow"
    SOON = "soon"
    LATER = "later"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class DaysLabel:
    text: str
    urgency: Urgency


@dataclass(frozen=True)
class FilterOptions:
    search_text: str = ""
    category_id: int | None = None
    only_upcoming: bool = False


def label(days: int) -> DaysLabel:
    if days < 0:
        raise ValueError(f"Days until birthday must be non-negative: {days}")
    if days == 0:
        return DaysLabel("Today!", Urgency.TODAY)
    if days == 1:
        return DaysLabel("Tomorrow", Urgency.TOMORROW)
    if days <= 7:
        return DaysLabel(f"{days} days", Urgency.SOON)
    if days <= UPCOMING_WINDOW_DAYS:
        return DaysLabel(f"{days} days", Urgency.LATER)
    return DaysLabel(f"{days} days", Urgency.NEUTRAL)


def _matches(record: BirthdayRecord, options: FilterOptions, needle: str) -> bool:
    if needle and needle not in record.friend_name.lower():
        return False
    if options.category_id is not None and record.category_id != options.category_id:
        return False
    if options.only_upcoming and record.days_until_birthday > UPCOMING_WINDOW_DAYS:
        return False
    return True


def rank(records: Iterable[BirthdayRecord], options: FilterOptions | None = None) -> list[BirthdayRecord]:
    options = options or FilterOptions()
    needle = options.search_text.lower()
    kept = [record for record in records if _matches(record, options, needle)]
    # sorted() is stable, so equal day counts keep their input order.
    return sorted(kept, key=lambda record: record.days_until_birthday)


def parse_list_filters(args: Sequence[str], categories: Sequence[Category]) -> FilterOptions:
    only_upcoming = False
    category_id: int | None = None
    words: list[str] = []

    by_name = {category.name.strip().lower(): category for category in categories}

    for raw in args:
        token = raw.strip()
        if not token:
            continue
        if token.lower() in UPCOMING_KEYWORDS:
            only_upcoming = True
            continue
        if token.startswith("#") and len(token) > 1:
            category = by_name.get(token[1:].lower())
            if category is None:
                raise ValueError(f"Unknown category: {token[1:]}")
            category_id = category.id
            continue
        words.append(token)

    return FilterOptions(
        search_text=" ".join(words),
        category_id=category_id,
        only_upcoming=only_upcoming,
    )
