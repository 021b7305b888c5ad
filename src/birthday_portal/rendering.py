from __future__ import annotations

from typing import Sequence

from telegram.constants import MessageLimit

from birthday_portal.forms import format_notification_days, format_time_label
from birthday_portal.models import BirthdayDraft, BirthdayRecord, Category, NotificationSettings, ToneOption
from birthday_portal.ranking import FilterOptions, Urgency, label

URGENCY_MARKERS = {
    Urgency.TODAY: "🎂",
    Urgency.TOMORROW: "🎁",
    Urgency.SOON: "🟢",
    Urgency.LATER: "🟡",
    Urgency.NEUTRAL: "⚪",
}


def render_help() -> str:
    return (
        "Commands:\n"
        "/login - Sign in to your account\n"
        "/register - Create an account\n"
        "/logout - Sign out of this chat\n"
        "/dashboard - Birthdays in the next 30 days\n"
        "/summary - Totals and distribution charts\n"
        "/list [upcoming] [#Category] [name] - Search and filter birthdays\n"
        "/add - Add a birthday\n"
        "/edit - Edit a birthday\n"
        "/delete - Delete a birthday\n"
        "/wishes <id> [tone] - Wish suggestions for a birthday (/wishes alone lists tones)\n"
        "/import - Import birthdays from a CSV file\n"
        "/export - Download your birthdays as an iCal file\n"
        "/settings - Show notification settings\n"
        "/notifydays 7,3,1 - Remind N days before\n"
        "/notifytime 08:00 - Daily notification time\n"
        "/email on|off - Toggle email notifications\n"
        "/template <text> - Email template\n"
        "/categories - List categories\n"
        "/newcategory <name> [#RRGGBB] - Create a category\n"
        "/editcategory <id> <name> [#RRGGBB] - Update a category\n"
        "/deletecategory <id> - Delete a category\n"
        "/cancel - Cancel the active wizard"
    )


def _describe_filters(options: FilterOptions, categories: Sequence[Category]) -> str:
    parts: list[str] = []
    if options.search_text:
        parts.append(f'name contains "{options.search_text}"')
    if options.category_id is not None:
        names = {category.id: category.name for category in categories}
        parts.append(f"category {names.get(options.category_id, options.category_id)}")
    if options.only_upcoming:
        parts.append("next 30 days")
    return ", ".join(parts)


def render_birthday_list(
    records: Sequence[BirthdayRecord],
    options: FilterOptions,
    categories: Sequence[Category] = (),
) -> str:
    filters = _describe_filters(options, categories)
    header = f"Birthdays ({len(records)})"
    if filters:
        header += f" - {filters}"

    if not records:
        if filters:
            return f"{header}\nNo birthdays match your filters."
        return f"{header}\nNo birthdays yet. Use /add or /import to get started."

    lines = [header, "Sorted by soonest:"]
    for index, record in enumerate(records, start=1):
        days_label = label(record.days_until_birthday)
        lines.append(
            f"{index}. {URGENCY_MARKERS[days_label.urgency]} {record.friend_name} [id {record.id}]"
        )
        details = [
            days_label.text,
            f"Next {record.upcoming_birthday.isoformat()}",
            f"Age {record.age}",
        ]
        if record.category_name:
            details.append(record.category_name)
        if not record.is_active:
            details.append("inactive")
        lines.append(f"   {' | '.join(details)}")
    return "\n".join(lines)


def render_birthday_detail(record: BirthdayRecord) -> str:
    lines = [
        f"{record.friend_name} [id {record.id}]",
        f"Born: {record.birth_date.isoformat()} (age {record.age})",
        f"Next birthday: {record.upcoming_birthday.isoformat()} ({label(record.days_until_birthday).text})",
        f"Category: {record.category_name or 'Uncategorized'}",
    ]
    if record.friend_email:
        lines.append(f"Email: {record.friend_email}")
    if record.notes:
        lines.append(f"Notes: {record.notes}")
    lines.append(f"Reminders: {'on' if record.is_active else 'off'}")
    return "\n".join(lines)


def render_draft(draft: BirthdayDraft, categories: Sequence[Category] = ()) -> str:
    names = {category.id: category.name for category in categories}
    category = names.get(draft.category_id, "Uncategorized") if draft.category_id is not None else "Uncategorized"
    return (
        f"Name: {draft.friend_name}\n"
        f"Birth date: {draft.birth_date.isoformat()}\n"
        f"Email: {draft.friend_email or '(not set)'}\n"
        f"Notes: {draft.notes or '(not set)'}\n"
        f"Category: {category}\n"
        f"Reminders: {'on' if draft.is_active else 'off'}"
    )


def render_category_choices(categories: Sequence[Category]) -> str:
    lines = ["Reply with a category number, or skip for none:"]
    for index, category in enumerate(categories, start=1):
        lines.append(f"{index}. {category.name}")
    return "\n".join(lines)


def render_categories(categories: Sequence[Category]) -> str:
    if not categories:
        return "No categories yet. Create one with /newcategory <name> [#RRGGBB]."
    lines = [f"Categories ({len(categories)})"]
    for category in categories:
        color = f" {category.color}" if category.color else ""
        noun = "birthday" if category.birthday_count == 1 else "birthdays"
        lines.append(f"- {category.name} [id {category.id}]{color} - {category.birthday_count} {noun}")
    return "\n".join(lines)


def render_settings(settings: NotificationSettings) -> str:
    template = settings.email_template or "(default)"
    return (
        "Notification settings\n"
        f"Remind: {format_notification_days(settings.notification_days)}\n"
        f"Time: {format_time_label(settings.notification_time)}\n"
        f"Email notifications: {'on' if settings.email_enabled else 'off'}\n"
        f"Email template: {template}"
    )


def render_wishes(record: BirthdayRecord, wishes: Sequence[str], tone: str | None) -> str:
    if not wishes:
        return f"No wish suggestions available for {record.friend_name}."
    tone_note = f" ({tone})" if tone else ""
    lines = [f"Wish ideas for {record.friend_name}{tone_note}:"]
    for index, wish in enumerate(wishes, start=1):
        lines.append(f"{index}. {wish}")
    return "\n\n".join([lines[0], "\n".join(lines[1:])])


def render_tones(tones: Sequence[ToneOption]) -> str:
    if not tones:
        return "No wish tones available."
    lines = ["Tones:"]
    for tone in tones:
        description = f": {tone.description}" if tone.description else ""
        lines.append(f"- {tone.value} ({tone.label}){description}")
    return "\n".join(lines)


def split_message(text: str, limit: int = MessageLimit.MAX_TEXT_LENGTH) -> list[str]:
    """Split text into chunks Telegram accepts, breaking at line boundaries.

    A single line longer than ``limit`` is cut into ``limit``-sized pieces.
    """
    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current or not chunks:
        chunks.append(current)
    return chunks
