from datetime import date, timedelta

import pytest

from birthday_portal.models import BirthdayRecord, Category
from birthday_portal.ranking import FilterOptions, Urgency, label, parse_list_filters, rank

TODAY = date(2026, 10, 19)


def make_record(
    record_id: int,
    days_until: int,
    *,
    name: str | None = None,
    category_id: int | None = None,
) -> BirthdayRecord:
    return BirthdayRecord(
        id=record_id,
        friend_name=name or f"Friend {record_id}",
        birth_date=date(1990, 1, 1),
        age=36,
        days_until_birthday=days_until,
        upcoming_birthday=TODAY + timedelta(days=days_until),
        category_id=category_id,
    )


def test_default_filters_sort_by_days_and_label() -> None:
    records = [make_record(1, 40), make_record(2, 0), make_record(3, 7), make_record(4, 1)]

    ranked = rank(records, FilterOptions())

    assert [record.days_until_birthday for record in ranked] == [0, 1, 7, 40]
    assert [label(record.days_until_birthday).text for record in ranked] == [
        "Today!",
        "Tomorrow",
        "7 days",
        "40 days",
    ]


def test_only_upcoming_keeps_thirty_day_window() -> None:
    records = [make_record(1, 40), make_record(2, 0), make_record(3, 31), make_record(4, 30)]

    ranked = rank(records, FilterOptions(only_upcoming=True))

    assert [record.id for record in ranked] == [2, 4]


def test_default_filters_drop_nothing() -> None:
    records = [make_record(index, days) for index, days in enumerate([5, 300, 0, 12, 5])]

    ranked = rank(records)

    assert len(ranked) == len(records)
    assert {record.id for record in ranked} == {record.id for record in records}


def test_equal_days_keep_input_order() -> None:
    records = [make_record(10, 3), make_record(11, 1), make_record(12, 3), make_record(13, 3)]

    ranked = rank(records)

    assert [record.id for record in ranked] == [11, 10, 12, 13]


def test_rank_is_idempotent() -> None:
    records = [
        make_record(1, 12, name="Alice", category_id=2),
        make_record(2, 3, name="alan", category_id=2),
        make_record(3, 3, name="Bob", category_id=2),
        make_record(4, 45, name="Albert", category_id=1),
    ]
    options = FilterOptions(search_text="AL", category_id=2, only_upcoming=True)

    once = rank(records, options)

    assert rank(once, options) == once
    assert [record.id for record in once] == [2, 1]


def test_search_is_case_insensitive_substring() -> None:
    records = [make_record(1, 5, name="Maria Lopez"), make_record(2, 2, name="Mario")]

    ranked = rank(records, FilterOptions(search_text="LOP"))

    assert [record.id for record in ranked] == [1]


def test_category_filter_excludes_uncategorized() -> None:
    records = [make_record(1, 5, category_id=None), make_record(2, 9, category_id=7)]

    ranked = rank(records, FilterOptions(category_id=7))

    assert [record.id for record in ranked] == [2]


@pytest.mark.parametrize(
    ("days", "text", "urgency"),
    [
        (0, "Today!", Urgency.TODAY),
        (1, "Tomorrow", Urgency.TOMORROW),
        (2, "2 days", Urgency.SOON),
        (7, "7 days", Urgency.SOON),
        (8, "8 days", Urgency.LATER),
        (30, "30 days", Urgency.LATER),
        (31, "31 days", Urgency.NEUTRAL),
        (365, "365 days", Urgency.NEUTRAL),
        (10_000, "10000 days", Urgency.NEUTRAL),
    ],
)
def test_label_buckets(days: int, text: str, urgency: Urgency) -> None:
    result = label(days)
    assert result.text == text
    assert result.urgency is urgency


def test_label_urgency_never_increases_with_days() -> None:
    order = [Urgency.TODAY, Urgency.TOMORROW, Urgency.SOON, Urgency.LATER, Urgency.NEUTRAL]
    positions = [order.index(label(days).urgency) for days in range(0, 400)]

    assert positions == sorted(positions)


def test_label_rejects_negative_days() -> None:
    with pytest.raises(ValueError):
        label(-1)


def test_parse_list_filters_reads_keywords_and_category() -> None:
    categories = [Category(id=3, name="Family"), Category(id=4, name="Work")]

    options = parse_list_filters(["upcoming", "#family", "ann", "marie"], categories)

    assert options == FilterOptions(search_text="ann marie", category_id=3, only_upcoming=True)


def test_parse_list_filters_empty_args_are_default() -> None:
    assert parse_list_filters([], []) == FilterOptions()


def test_parse_list_filters_unknown_category() -> None:
    with pytest.raises(ValueError, match="Unknown category"):
        parse_list_filters(["#Gym"], [Category(id=1, name="Work")])
