from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Sequence

from birthday_portal.models import Analytics, BirthdayRecord
from birthday_portal.ranking import label

DASHBOARD_WINDOW_DAYS = 30
DASHBOARD_LIMIT = 10
BAR_WIDTH = 12


@dataclass(frozen=True)
class SummaryStats:
    total: int
    this_month: int
    today: int


def summary_stats(records: Sequence[BirthdayRecord], today: date) -> SummaryStats:
    """Counts for the summary view, derived from ``upcoming_birthday``.

    "Today" here is the client calendar date, so it can disagree with the
    backend's ``days_until_birthday == 0`` around midnight or when the two
    clocks use different timezones. The dashboard uses the backend value.
    """
    this_month = [record for record in records if record.upcoming_birthday.month == today.month]
    todays = [
        record
        for record in this_month
        if record.upcoming_birthday.day == today.day
    ]
    return SummaryStats(total=len(records), this_month=len(this_month), today=len(todays))


def render_bar_chart(title: str, values: dict[str, int], *, width: int = BAR_WIDTH) -> str:
    lines = [title]
    if not values:
        lines.append("  (no data)")
        return "\n".join(lines)

    peak = max(values.values())
    name_width = max(len(name) for name in values)
    for name, count in values.items():
        filled = round(count / peak * width) if peak else 0
        if count and not filled:
            filled = 1
        lines.append(f"  {name.ljust(name_width)} {'█' * filled}{'·' * (width - filled)} {count}")
    return "\n".join(lines)


def render_summary(stats: SummaryStats, analytics: Analytics) -> str:
    categories = {name: count for name, count in analytics.category_distribution.items() if count > 0}
    sections = [
        "Birthday summary",
        f"Total: {stats.total} | This month: {stats.this_month} | Today: {stats.today}",
        f"Upcoming in 7 days: {analytics.upcoming_in_7_days}",
        "",
        render_bar_chart("Birthdays by month", analytics.monthly_distribution),
        "",
        render_bar_chart("Birthdays by category", dict(sorted(categories.items()))),
    ]
    return "\n".join(sections)


def render_dashboard(greeting_name: str, upcoming: Sequence[BirthdayRecord]) -> str:
    shown = list(upcoming)[:DASHBOARD_LIMIT]
    lines = [f"Welcome back, {greeting_name}!" if greeting_name else "Welcome back!"]

    celebrating = [record.friend_name for record in shown if record.days_until_birthday == 0]
    if celebrating:
        lines.append(f"🎉 Celebrating today: {', '.join(celebrating)}")

    if not shown:
        lines.append(f"No birthdays in the next {DASHBOARD_WINDOW_DAYS} days.")
        return "\n".join(lines)

    lines.append(f"Upcoming in the next {DASHBOARD_WINDOW_DAYS} days:")
    for record in shown:
        days_label = label(record.days_until_birthday)
        lines.append(
            f"- {record.friend_name}: {days_label.text} ({record.upcoming_birthday.isoformat()})"
            f" • Turning {record.age + 1}"
        )
    return "\n".join(lines)
