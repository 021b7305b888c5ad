from __future__ import annotations

import asyncio
import dataclasses
import html
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from telegram import Document, Update
from telegram.error import TelegramError
from telegram.ext import (
    CallbackContext,
    CommandHandler,
    ConversationHandler,
    MessageHandler,
    filters,
)

from birthday_portal.api_client import ApiError, BirthdayApiClient, SessionExpiredError
from birthday_portal.csv_import import CSV_EXPECTED_COLUMNS, ImportRejected, import_csv, render_import_outcome
from birthday_portal.dashboard import DASHBOARD_WINDOW_DAYS, render_dashboard, render_summary, summary_stats
from birthday_portal.forms import (
    FormError,
    is_skip,
    parse_birth_date,
    parse_category_name,
    parse_color,
    parse_email,
    parse_email_template,
    parse_friend_name,
    parse_notes,
    parse_notification_days,
    parse_notification_time,
    validate_registration,
)
from birthday_portal.models import BirthdayDraft, Category, NotificationSettings
from birthday_portal.ranking import FilterOptions, parse_list_filters, rank
from birthday_portal.rendering import (
    render_birthday_detail,
    render_birthday_list,
    render_categories,
    render_category_choices,
    render_draft,
    render_help,
    render_settings,
    render_tones,
    render_wishes,
    split_message,
)
from birthday_portal.session import Session, SessionStore
from birthday_portal.settings import Settings

LOGGER = logging.getLogger(__name__)

(
    STATE_LOGIN_EMAIL,
    STATE_LOGIN_PASSWORD,
    STATE_REGISTER_NAME,
    STATE_REGISTER_EMAIL,
    STATE_REGISTER_PASSWORD,
    STATE_REGISTER_CONFIRM,
    STATE_ADD_NAME,
    STATE_ADD_BIRTH_DATE,
    STATE_ADD_EMAIL,
    STATE_ADD_NOTES,
    STATE_ADD_CATEGORY,
    STATE_ADD_CONFIRM,
    STATE_EDIT_SELECT,
    STATE_EDIT_NAME,
    STATE_EDIT_BIRTH_DATE,
    STATE_EDIT_EMAIL,
    STATE_EDIT_NOTES,
    STATE_EDIT_CATEGORY,
    STATE_EDIT_ACTIVE,
    STATE_EDIT_CONFIRM,
    STATE_DELETE_SELECT,
    STATE_DELETE_CONFIRM,
    STATE_IMPORT_FILE,
) = range(23)

PENDING_LOGIN_KEY = "pending_login"
PENDING_REGISTER_KEY = "pending_register"
PENDING_ADD_KEY = "pending_add_birthday"
PENDING_EDIT_KEY = "pending_edit_birthday"
PENDING_DELETE_KEY = "pending_delete_birthday"
PENDING_KEYS = (
    PENDING_LOGIN_KEY,
    PENDING_REGISTER_KEY,
    PENDING_ADD_KEY,
    PENDING_EDIT_KEY,
    PENDING_DELETE_KEY,
)

WISH_COUNT = 6
CLEAR_WORDS = {"none", "clear", "remove"}


@dataclass(frozen=True)
class HandlerDependencies:
    settings: Settings
    api: BirthdayApiClient
    sessions: SessionStore


class TelegramUpload:
    def __init__(self, document: Document) -> None:
        self.document = document
        self.file_name = document.file_name
        self.mime_type = document.mime_type

    async def read_bytes(self) -> bytes:
        telegram_file = await self.document.get_file()
        return bytes(await telegram_file.download_as_bytearray())


def _deps(context: CallbackContext) -> HandlerDependencies:
    return context.application.bot_data["handler_deps"]


def _chat_id(update: Update) -> int:
    return update.effective_chat.id


def _text(update: Update) -> str:
    return (update.effective_message.text or "").strip()


def _parse_id(raw_text: str) -> int | None:
    value = raw_text.strip().lstrip("#")
    if not value.isdigit():
        return None
    return int(value)


def _is_yes(decision: str) -> bool | None:
    lowered = decision.strip().lower()
    if lowered in {"yes", "y"}:
        return True
    if lowered in {"no", "n"}:
        return False
    return None


def _clear_pending(context: CallbackContext) -> None:
    for key in PENDING_KEYS:
        context.user_data.pop(key, None)


def _pending(context: CallbackContext, key: str, *required: str) -> dict[str, Any] | None:
    """Return the wizard's pending data, or None once it was cleared.

    Logout, /cancel and session expiry drop every pending dict, so a step
    that finds its data missing must end its conversation.
    """
    pending = context.user_data.get(key)
    if not isinstance(pending, dict) or any(field not in pending for field in required):
        return None
    return pending


async def _wizard_expired(update: Update, title: str, command: str) -> int:
    await update.effective_message.reply_text(f"{title} session expired. Send /{command} to start again.")
    return ConversationHandler.END


async def _reply_chunks(update: Update, text: str) -> None:
    for chunk in split_message(text):
        await update.effective_message.reply_text(chunk)


async def _require_session(update: Update, context: CallbackContext) -> Session | None:
    session = _deps(context).sessions.get(_chat_id(update))
    if session is None:
        await update.effective_message.reply_text("Please /login first (or /register for a new account).")
    return session


def _failure_text(exc: ApiError, default: str) -> str:
    # Client-side rejections carry a message meant for the user.
    if exc.status_code is not None and 400 <= exc.status_code < 500:
        return exc.message
    return default


async def _report_failure(update: Update, context: CallbackContext, exc: ApiError, failure_text: str) -> None:
    if isinstance(exc, SessionExpiredError):
        _deps(context).sessions.end(_chat_id(update))
        _clear_pending(context)
        LOGGER.info("Session expired for chat %s", _chat_id(update))
        await update.effective_message.reply_text("Your session has expired. Please /login again.")
        return

    LOGGER.error("%s: %s", failure_text, exc, exc_info=exc)
    await update.effective_message.reply_text(failure_text)


async def _delete_sensitive_message(update: Update) -> None:
    try:
        await update.effective_message.delete()
    except TelegramError as exc:
        LOGGER.debug("Could not delete password message: %s", exc)


async def start_command(update: Update, context: CallbackContext) -> None:
    session = _deps(context).sessions.get(_chat_id(update))
    greeting = f"Hi {session.name}! " if session else "Welcome to your birthday reminders. "
    hint = "" if session else "Send /login or /register to begin.\n\n"
    await update.effective_message.reply_text(f"{greeting}\n{hint}{render_help()}")


async def help_command(update: Update, context: CallbackContext) -> None:
    await update.effective_message.reply_text(render_help())


async def logout_command(update: Update, context: CallbackContext) -> int:
    _clear_pending(context)
    if _deps(context).sessions.end(_chat_id(update)):
        await update.effective_message.reply_text("You have been logged out.")
    else:
        await update.effective_message.reply_text("You are not logged in.")
    return ConversationHandler.END


async def login_start(update: Update, context: CallbackContext) -> int:
    context.user_data[PENDING_LOGIN_KEY] = {}
    await update.effective_message.reply_text("Step 1/2: Send your email address.")
    return STATE_LOGIN_EMAIL


async def login_email(update: Update, context: CallbackContext) -> int:
    if _pending(context, PENDING_LOGIN_KEY) is None:
        return await _wizard_expired(update, "Login", "login")

    try:
        email = parse_email(_text(update))
    except FormError as exc:
        await update.effective_message.reply_text(f"{exc}. Please send your email address.")
        return STATE_LOGIN_EMAIL

    context.user_data[PENDING_LOGIN_KEY] = {"email": email}
    await update.effective_message.reply_text(
        "Step 2/2: Send your password. The message will be deleted after reading."
    )
    return STATE_LOGIN_PASSWORD


async def login_password(update: Update, context: CallbackContext) -> int:
    deps = _deps(context)
    password = update.effective_message.text or ""
    await _delete_sensitive_message(update)

    pending = context.user_data.pop(PENDING_LOGIN_KEY, {})
    email = pending.get("email")
    if not email:
        await update.effective_chat.send_message("Login session expired. Send /login to start again.")
        return ConversationHandler.END

    try:
        auth = await deps.api.login(email, password)
    except ApiError as exc:
        LOGGER.warning("Login failed for %s: %s", email, exc)
        await update.effective_chat.send_message(_failure_text(exc, "Login failed"))
        return ConversationHandler.END

    deps.sessions.start(_chat_id(update), auth)
    LOGGER.info("User %s logged in from chat %s", auth.user_id, _chat_id(update))
    await update.effective_chat.send_message(f"Welcome back, {auth.name}! 🎉 Try /dashboard.")
    return ConversationHandler.END


async def register_start(update: Update, context: CallbackContext) -> int:
    context.user_data[PENDING_REGISTER_KEY] = {}
    await update.effective_chat.send_message("Create your account.\nStep 1/4: Send your name.")
    return STATE_REGISTER_NAME


async def register_name(update: Update, context: CallbackContext) -> int:
    if _pending(context, PENDING_REGISTER_KEY) is None:
        return await _wizard_expired(update, "Registration", "register")

    name = _text(update)
    if not name:
        await update.effective_chat.send_message("Name cannot be empty. Please send your name.")
        return STATE_REGISTER_NAME

    context.user_data[PENDING_REGISTER_KEY] = {"name": name}
    await update.effective_chat.send_message("Step 2/4: Send your email address.")
    return STATE_REGISTER_EMAIL


async def register_email(update: Update, context: CallbackContext) -> int:
    pending = _pending(context, PENDING_REGISTER_KEY, "name")
    if pending is None:
        return await _wizard_expired(update, "Registration", "register")

    try:
        email = parse_email(_text(update))
    except FormError as exc:
        await update.effective_chat.send_message(f"{exc}. Please send your email address.")
        return STATE_REGISTER_EMAIL

    pending["email"] = email
    await update.effective_chat.send_message("Step 3/4: Choose a password (at least 6 characters).")
    return STATE_REGISTER_PASSWORD


async def register_password(update: Update, context: CallbackContext) -> int:
    password = update.effective_message.text or ""
    await _delete_sensitive_message(update)

    pending = _pending(context, PENDING_REGISTER_KEY, "name", "email")
    if pending is None:
        await update.effective_chat.send_message("Registration session expired. Send /register to start again.")
        return ConversationHandler.END

    pending["password"] = password
    await update.effective_chat.send_message("Step 4/4: Send the same password again to confirm.")
    return STATE_REGISTER_CONFIRM


async def register_confirm(update: Update, context: CallbackContext) -> int:
    deps = _deps(context)
    confirmation = update.effective_message.text or ""
    await _delete_sensitive_message(update)

    pending = _pending(context, PENDING_REGISTER_KEY, "name", "email")
    if pending is None or "password" not in pending:
        context.user_data.pop(PENDING_REGISTER_KEY, None)
        await update.effective_chat.send_message("Registration session expired. Send /register to start again.")
        return ConversationHandler.END

    try:
        name, email = validate_registration(
            str(pending.get("name", "")),
            str(pending.get("email", "")),
            str(pending["password"]),
            confirmation,
        )
    except FormError as exc:
        pending.pop("password", None)
        await update.effective_chat.send_message(f"{exc}. Step 3/4: Send your password again.")
        return STATE_REGISTER_PASSWORD

    context.user_data.pop(PENDING_REGISTER_KEY, None)
    try:
        auth = await deps.api.register(name, email, str(pending["password"]))
    except ApiError as exc:
        LOGGER.warning("Registration failed for %s: %s", email, exc)
        await update.effective_chat.send_message(_failure_text(exc, "Registration failed"))
        return ConversationHandler.END

    deps.sessions.start(_chat_id(update), auth)
    LOGGER.info("Registered user %s from chat %s", auth.user_id, _chat_id(update))
    await update.effective_chat.send_message("Account created successfully! 🎉 Add someone with /add.")
    return ConversationHandler.END


async def list_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    session = await _require_session(update, context)
    if session is None:
        return

    try:
        records, categories = await asyncio.gather(
            deps.api.list_birthdays(session.token),
            deps.api.list_categories(session.token),
        )
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to load birthdays")
        return

    try:
        options = parse_list_filters(context.args or [], categories)
    except ValueError as exc:
        names = ", ".join(f"#{category.name}" for category in categories) or "none yet"
        await update.effective_message.reply_text(f"{exc}. Available categories: {names}")
        return

    ranked = rank(records, options)
    await _reply_chunks(update, render_birthday_list(ranked, options, categories))


async def _send_refreshed_list(update: Update, context: CallbackContext, session: Session) -> None:
    try:
        records = await _deps(context).api.list_birthdays(session.token)
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to load birthdays")
        return
    options = FilterOptions()
    await _reply_chunks(update, render_birthday_list(rank(records, options), options))


async def dashboard_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    session = await _require_session(update, context)
    if session is None:
        return

    try:
        upcoming = await deps.api.upcoming_birthdays(session.token, DASHBOARD_WINDOW_DAYS)
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to load dashboard data")
        return

    await update.effective_message.reply_text(render_dashboard(session.name, rank(upcoming)))


async def summary_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    session = await _require_session(update, context)
    if session is None:
        return

    try:
        records, analytics = await asyncio.gather(
            deps.api.list_birthdays(session.token),
            deps.api.analytics(session.token),
        )
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to load summary data")
        return

    today = datetime.now(ZoneInfo(deps.settings.timezone)).date()
    message = render_summary(summary_stats(records, today), analytics)
    await update.effective_message.reply_text(f"<pre>{html.escape(message, quote=False)}</pre>", parse_mode="HTML")


async def export_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    session = await _require_session(update, context)
    if session is None:
        return

    try:
        content = await deps.api.export_ical(session.token)
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to export calendar")
        return

    await update.effective_message.reply_document(
        document=content,
        filename="birthdays.ics",
        caption="Calendar exported successfully!",
    )


async def wishes_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    args = context.args or []
    birthday_id = _parse_id(args[0]) if args else None
    tone = args[1].lower() if len(args) > 1 else None

    session = await _require_session(update, context)
    if session is None:
        return

    try:
        if birthday_id is None or tone is not None:
            tones = await deps.api.wish_tones(session.token)
            if birthday_id is None:
                await update.effective_message.reply_text(f"Usage: /wishes <id> [tone]\n\n{render_tones(tones)}")
                return
            if tone not in {option.value.lower() for option in tones}:
                choices = ", ".join(option.value for option in tones) or "none available"
                await update.effective_message.reply_text(f"Tone must be one of: {choices}")
                return
        record = await deps.api.get_birthday(session.token, birthday_id)
        wishes = await deps.api.wishes(session.token, birthday_id, count=WISH_COUNT, tone=tone)
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to generate wishes")
        return

    await update.effective_message.reply_text(render_wishes(record, wishes, tone))


async def settings_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    session = await _require_session(update, context)
    if session is None:
        return

    try:
        settings = await deps.api.get_settings(session.token)
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to load settings")
        return

    await update.effective_message.reply_text(render_settings(settings))


async def _save_settings(
    update: Update,
    context: CallbackContext,
    change: Callable[[NotificationSettings], NotificationSettings],
) -> None:
    deps = _deps(context)
    session = await _require_session(update, context)
    if session is None:
        return

    try:
        current = await deps.api.get_settings(session.token)
        saved = await deps.api.update_settings(session.token, change(current))
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to save settings")
        return

    await update.effective_message.reply_text(f"Settings saved successfully!\n\n{render_settings(saved)}")


async def notify_days_command(update: Update, context: CallbackContext) -> None:
    try:
        days, _used_default = parse_notification_days(" ".join(context.args or []))
    except FormError as exc:
        await update.effective_message.reply_text(f"{exc}. Example: /notifydays 7,3,1")
        return
    await _save_settings(
        update,
        context,
        lambda current: dataclasses.replace(current, notification_days=tuple(days)),
    )


async def notify_time_command(update: Update, context: CallbackContext) -> None:
    try:
        value = parse_notification_time(" ".join(context.args or []))
    except FormError as exc:
        await update.effective_message.reply_text(f"{exc}. Example: /notifytime 08:00")
        return
    await _save_settings(
        update,
        context,
        lambda current: dataclasses.replace(current, notification_time=value),
    )


async def email_command(update: Update, context: CallbackContext) -> None:
    choice = " ".join(context.args or []).strip().lower()
    if choice not in {"on", "off"}:
        await update.effective_message.reply_text("Usage: /email on|off")
        return
    await _save_settings(
        update,
        context,
        lambda current: dataclasses.replace(current, email_enabled=choice == "on"),
    )


async def template_command(update: Update, context: CallbackContext) -> None:
    raw = (update.effective_message.text or "").partition(" ")[2]
    try:
        template = parse_email_template(raw)
    except FormError as exc:
        await update.effective_message.reply_text(
            f"{exc}.\nExample: /template Reminder: {{friendName}} turns {{age}} on {{birthDate}}!"
        )
        return
    await _save_settings(
        update,
        context,
        lambda current: dataclasses.replace(current, email_template=template),
    )


async def categories_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    session = await _require_session(update, context)
    if session is None:
        return

    try:
        categories = await deps.api.list_categories(session.token)
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to load categories")
        return

    await _reply_chunks(update, render_categories(categories))


def parse_category_args(args: list[str]) -> tuple[str, str | None]:
    words = [word for word in args if word.strip()]
    color: str | None = None
    if words and words[-1].startswith("#"):
        color = parse_color(words.pop())
    return parse_category_name(" ".join(words)), color


async def new_category_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    try:
        name, color = parse_category_args(list(context.args or []))
    except FormError as exc:
        await update.effective_message.reply_text(f"{exc}. Usage: /newcategory <name> [#RRGGBB]")
        return

    session = await _require_session(update, context)
    if session is None:
        return

    try:
        created = await deps.api.create_category(session.token, Category(id=0, name=name, color=color))
    except ApiError as exc:
        await _report_failure(update, context, exc, _failure_text(exc, "Failed to save category"))
        return

    await update.effective_message.reply_text(f"Category created! {created.name} [id {created.id}]")


async def edit_category_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    args = list(context.args or [])
    category_id = _parse_id(args[0]) if args else None
    if category_id is None:
        await update.effective_message.reply_text("Usage: /editcategory <id> <name> [#RRGGBB]")
        return
    try:
        name, color = parse_category_args(args[1:])
    except FormError as exc:
        await update.effective_message.reply_text(f"{exc}. Usage: /editcategory <id> <name> [#RRGGBB]")
        return

    session = await _require_session(update, context)
    if session is None:
        return

    try:
        current = await deps.api.get_category(session.token, category_id)
        updated = await deps.api.update_category(
            session.token,
            dataclasses.replace(current, name=name, color=color or current.color),
        )
    except ApiError as exc:
        await _report_failure(update, context, exc, _failure_text(exc, "Failed to save category"))
        return

    await update.effective_message.reply_text(f"Category updated! {updated.name} [id {updated.id}]")


async def delete_category_command(update: Update, context: CallbackContext) -> None:
    deps = _deps(context)
    args = context.args or []
    category_id = _parse_id(args[0]) if args else None
    if category_id is None:
        await update.effective_message.reply_text("Usage: /deletecategory <id>")
        return

    session = await _require_session(update, context)
    if session is None:
        return

    try:
        await deps.api.delete_category(session.token, category_id)
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to delete category")
        return

    await update.effective_message.reply_text("Category deleted")


async def _fetch_categories(update: Update, context: CallbackContext, session: Session) -> list[Category] | None:
    try:
        return await _deps(context).api.list_categories(session.token)
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to load categories")
        return None


def _pick_category(raw_text: str, categories: list[dict[str, Any]]) -> int | None:
    index = _parse_id(raw_text)
    if index is None or index < 1 or index > len(categories):
        raise FormError(f"Category must be a number between 1 and {len(categories)}")
    return int(categories[index - 1]["id"])


def _draft_from_pending(pending: dict[str, Any]) -> BirthdayDraft:
    return BirthdayDraft(
        friend_name=str(pending["friend_name"]),
        birth_date=pending["birth_date"],
        friend_email=pending.get("friend_email"),
        notes=pending.get("notes"),
        category_id=pending.get("category_id"),
        is_active=bool(pending.get("is_active", True)),
    )


def _stored_categories(pending: dict[str, Any]) -> list[Category]:
    return [Category(id=int(row["id"]), name=str(row["name"])) for row in pending.get("categories", [])]


async def add_start(update: Update, context: CallbackContext) -> int:
    session = await _require_session(update, context)
    if session is None:
        return ConversationHandler.END

    context.user_data[PENDING_ADD_KEY] = {}
    await update.effective_message.reply_text(
        "Add birthday wizard started.\nStep 1/5: Send your friend's name."
    )
    return STATE_ADD_NAME


def _add_pending(context: CallbackContext, *required: str) -> dict[str, Any] | None:
    return _pending(context, PENDING_ADD_KEY, *required)


async def _add_expired(update: Update) -> int:
    return await _wizard_expired(update, "Add", "add")


async def add_name(update: Update, context: CallbackContext) -> int:
    if _add_pending(context) is None:
        return await _add_expired(update)

    try:
        name = parse_friend_name(_text(update))
    except FormError as exc:
        await update.effective_message.reply_text(f"{exc}. Please send a name.")
        return STATE_ADD_NAME

    context.user_data[PENDING_ADD_KEY] = {"friend_name": name}
    await update.effective_message.reply_text("Step 2/5: Send the birth date as YYYY-MM-DD.")
    return STATE_ADD_BIRTH_DATE


async def add_birth_date(update: Update, context: CallbackContext) -> int:
    pending = _add_pending(context, "friend_name")
    if pending is None:
        return await _add_expired(update)

    try:
        birth_date = parse_birth_date(_text(update))
    except FormError as exc:
        await update.effective_message.reply_text(f"{exc}. Please send YYYY-MM-DD.")
        return STATE_ADD_BIRTH_DATE

    pending["birth_date"] = birth_date
    await update.effective_message.reply_text("Step 3/5: Send their email address, or skip.")
    return STATE_ADD_EMAIL


async def add_email(update: Update, context: CallbackContext) -> int:
    pending = _add_pending(context, "friend_name", "birth_date")
    if pending is None:
        return await _add_expired(update)

    raw_text = _text(update)
    if is_skip(raw_text):
        pending["friend_email"] = None
    else:
        try:
            pending["friend_email"] = parse_email(raw_text)
        except FormError as exc:
            await update.effective_message.reply_text(f"{exc}. Send an email address or skip.")
            return STATE_ADD_EMAIL

    await update.effective_message.reply_text(
        "Step 4/5: Send notes (gift ideas, plans, up to 500 characters), or skip."
    )
    return STATE_ADD_NOTES


async def add_notes(update: Update, context: CallbackContext) -> int:
    pending = _add_pending(context, "friend_name", "birth_date")
    if pending is None:
        return await _add_expired(update)

    raw_text = _text(update)
    if is_skip(raw_text):
        pending["notes"] = None
    else:
        try:
            pending["notes"] = parse_notes(raw_text) or None
        except FormError as exc:
            await update.effective_message.reply_text(f"{exc}. Send shorter notes or skip.")
            return STATE_ADD_NOTES

    session = await _require_session(update, context)
    if session is None:
        context.user_data.pop(PENDING_ADD_KEY, None)
        return ConversationHandler.END
    categories = await _fetch_categories(update, context, session)
    if categories is None:
        context.user_data.pop(PENDING_ADD_KEY, None)
        return ConversationHandler.END

    pending["categories"] = [{"id": category.id, "name": category.name} for category in categories]
    if not categories:
        pending["category_id"] = None
        return await _add_summary(update, pending)

    await update.effective_message.reply_text(f"Step 5/5: {render_category_choices(categories)}")
    return STATE_ADD_CATEGORY


async def add_category(update: Update, context: CallbackContext) -> int:
    pending = _add_pending(context, "friend_name", "birth_date")
    if pending is None:
        return await _add_expired(update)

    raw_text = _text(update)
    if is_skip(raw_text):
        pending["category_id"] = None
    else:
        try:
            pending["category_id"] = _pick_category(raw_text, pending.get("categories", []))
        except FormError as exc:
            await update.effective_message.reply_text(f"{exc}, or skip.")
            return STATE_ADD_CATEGORY
    return await _add_summary(update, pending)


async def _add_summary(update: Update, pending: dict[str, Any]) -> int:
    draft = _draft_from_pending(pending)
    await update.effective_message.reply_text(
        "Confirm this birthday:\n"
        f"{render_draft(draft, _stored_categories(pending))}\n\n"
        "Reply with yes to save, or no to cancel."
    )
    return STATE_ADD_CONFIRM


async def add_confirm(update: Update, context: CallbackContext) -> int:
    deps = _deps(context)
    pending = _add_pending(context, "friend_name", "birth_date")
    if pending is None:
        return await _add_expired(update)

    decision = _is_yes(_text(update))
    if decision is None:
        await update.effective_message.reply_text("Please reply with yes or no.")
        return STATE_ADD_CONFIRM

    context.user_data.pop(PENDING_ADD_KEY, None)
    if not decision:
        await update.effective_message.reply_text("Canceled. No changes were made.")
        return ConversationHandler.END

    session = await _require_session(update, context)
    if session is None:
        return ConversationHandler.END

    try:
        created = await deps.api.create_birthday(session.token, _draft_from_pending(pending))
    except ApiError as exc:
        await _report_failure(update, context, exc, _failure_text(exc, "Failed to add birthday"))
        return ConversationHandler.END

    LOGGER.info("Added birthday %s for user %s", created.id, session.user_id)
    await update.effective_message.reply_text(
        f"Birthday added successfully! 🎉\n\n{render_birthday_detail(created)}"
    )
    return ConversationHandler.END


async def _select_prompt(update: Update, context: CallbackContext, session: Session, verb: str) -> bool:
    try:
        records = await _deps(context).api.list_birthdays(session.token)
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to load birthdays")
        return False

    if not records:
        await update.effective_message.reply_text("No birthdays yet. Use /add or /import to get started.")
        return False

    options = FilterOptions()
    await _reply_chunks(
        update,
        f"{render_birthday_list(rank(records, options), options)}\n\nReply with the id of the birthday to {verb}.",
    )
    return True


async def edit_start(update: Update, context: CallbackContext) -> int:
    session = await _require_session(update, context)
    if session is None:
        return ConversationHandler.END

    context.user_data[PENDING_EDIT_KEY] = {}
    args = context.args or []
    if args:
        return await _edit_load(update, context, session, args[0])

    if not await _select_prompt(update, context, session, "edit"):
        context.user_data.pop(PENDING_EDIT_KEY, None)
        return ConversationHandler.END
    return STATE_EDIT_SELECT


async def edit_select(update: Update, context: CallbackContext) -> int:
    if _pending(context, PENDING_EDIT_KEY) is None:
        return await _edit_expired(update)

    session = await _require_session(update, context)
    if session is None:
        return ConversationHandler.END
    return await _edit_load(update, context, session, _text(update))


async def _edit_load(update: Update, context: CallbackContext, session: Session, raw_id: str) -> int:
    deps = _deps(context)
    birthday_id = _parse_id(raw_id)
    if birthday_id is None:
        await update.effective_message.reply_text("Please send the id shown in the list.")
        return STATE_EDIT_SELECT

    try:
        record, categories = await asyncio.gather(
            deps.api.get_birthday(session.token, birthday_id),
            deps.api.list_categories(session.token),
        )
    except ApiError as exc:
        if exc.status_code == 404:
            await update.effective_message.reply_text("No birthday with that id. Please send an id from the list.")
            return STATE_EDIT_SELECT
        await _report_failure(update, context, exc, "Failed to load birthday")
        context.user_data.pop(PENDING_EDIT_KEY, None)
        return ConversationHandler.END

    draft = BirthdayDraft.from_record(record)
    context.user_data[PENDING_EDIT_KEY] = {
        "id": record.id,
        "original": draft,
        "friend_name": draft.friend_name,
        "birth_date": draft.birth_date,
        "friend_email": draft.friend_email,
        "notes": draft.notes,
        "category_id": draft.category_id,
        "is_active": draft.is_active,
        "categories": [{"id": category.id, "name": category.name} for category in categories],
    }
    await update.effective_message.reply_text(
        f"Editing:\n{render_birthday_detail(record)}\n\n"
        f"Step 1/6: Send a new name, or skip to keep \"{record.friend_name}\"."
    )
    return STATE_EDIT_NAME


def _edit_pending(context: CallbackContext) -> dict[str, Any] | None:
    return _pending(context, PENDING_EDIT_KEY, "id")


async def _edit_expired(update: Update) -> int:
    return await _wizard_expired(update, "Edit", "edit")


async def edit_name(update: Update, context: CallbackContext) -> int:
    pending = _edit_pending(context)
    if pending is None:
        return await _edit_expired(update)

    raw_text = _text(update)
    if not is_skip(raw_text):
        try:
            pending["friend_name"] = parse_friend_name(raw_text)
        except FormError as exc:
            await update.effective_message.reply_text(f"{exc}. Send a name or skip.")
            return STATE_EDIT_NAME

    await update.effective_message.reply_text(
        "Step 2/6: Send a new birth date as YYYY-MM-DD,\n"
        f"or skip to keep {pending['birth_date'].isoformat()}."
    )
    return STATE_EDIT_BIRTH_DATE


async def edit_birth_date(update: Update, context: CallbackContext) -> int:
    pending = _edit_pending(context)
    if pending is None:
        return await _edit_expired(update)

    raw_text = _text(update)
    if not is_skip(raw_text):
        try:
            pending["birth_date"] = parse_birth_date(raw_text)
        except FormError as exc:
            await update.effective_message.reply_text(f"{exc}. Send YYYY-MM-DD or skip.")
            return STATE_EDIT_BIRTH_DATE

    current = pending.get("friend_email") or "(not set)"
    await update.effective_message.reply_text(
        f"Step 3/6: Send a new email, none to clear it, or skip to keep {current}."
    )
    return STATE_EDIT_EMAIL


async def edit_email(update: Update, context: CallbackContext) -> int:
    pending = _edit_pending(context)
    if pending is None:
        return await _edit_expired(update)

    raw_text = _text(update)
    if raw_text.lower() in CLEAR_WORDS:
        pending["friend_email"] = None
    elif not is_skip(raw_text):
        try:
            pending["friend_email"] = parse_email(raw_text)
        except FormError as exc:
            await update.effective_message.reply_text(f"{exc}. Send an email, none, or skip.")
            return STATE_EDIT_EMAIL

    await update.effective_message.reply_text(
        "Step 4/6: Send new notes, none to clear them, or skip to keep the current notes."
    )
    return STATE_EDIT_NOTES


async def edit_notes(update: Update, context: CallbackContext) -> int:
    pending = _edit_pending(context)
    if pending is None:
        return await _edit_expired(update)

    raw_text = _text(update)
    if raw_text.lower() in CLEAR_WORDS:
        pending["notes"] = None
    elif not is_skip(raw_text):
        try:
            pending["notes"] = parse_notes(raw_text) or None
        except FormError as exc:
            await update.effective_message.reply_text(f"{exc}. Send shorter notes, none, or skip.")
            return STATE_EDIT_NOTES

    categories = _stored_categories(pending)
    if not categories:
        await update.effective_message.reply_text(
            "Step 6/6: Keep reminders on for this birthday? Reply on, off, or skip."
        )
        return STATE_EDIT_ACTIVE

    await update.effective_message.reply_text(
        f"Step 5/6: {render_category_choices(categories)}\nSend none to remove the category."
    )
    return STATE_EDIT_CATEGORY


async def edit_category(update: Update, context: CallbackContext) -> int:
    pending = _edit_pending(context)
    if pending is None:
        return await _edit_expired(update)

    raw_text = _text(update)
    if raw_text.lower() in CLEAR_WORDS:
        pending["category_id"] = None
    elif not is_skip(raw_text):
        try:
            pending["category_id"] = _pick_category(raw_text, pending.get("categories", []))
        except FormError as exc:
            await update.effective_message.reply_text(f"{exc}, none, or skip.")
            return STATE_EDIT_CATEGORY

    await update.effective_message.reply_text(
        "Step 6/6: Keep reminders on for this birthday? Reply on, off, or skip."
    )
    return STATE_EDIT_ACTIVE


async def edit_active(update: Update, context: CallbackContext) -> int:
    pending = _edit_pending(context)
    if pending is None:
        return await _edit_expired(update)

    raw_text = _text(update).lower()
    if raw_text in {"on", "off"}:
        pending["is_active"] = raw_text == "on"
    elif not is_skip(raw_text):
        await update.effective_message.reply_text("Please reply on, off, or skip.")
        return STATE_EDIT_ACTIVE

    categories = _stored_categories(pending)
    await update.effective_message.reply_text(
        "Confirm these edits:\n"
        f"Before:\n{render_draft(pending['original'], categories)}\n\n"
        f"After:\n{render_draft(_draft_from_pending(pending), categories)}\n\n"
        "Reply with yes to save, or no to cancel."
    )
    return STATE_EDIT_CONFIRM


async def edit_confirm(update: Update, context: CallbackContext) -> int:
    deps = _deps(context)
    pending = _edit_pending(context)
    if pending is None:
        return await _edit_expired(update)

    decision = _is_yes(_text(update))
    if decision is None:
        await update.effective_message.reply_text("Please reply with yes or no.")
        return STATE_EDIT_CONFIRM

    if not decision:
        context.user_data.pop(PENDING_EDIT_KEY, None)
        await update.effective_message.reply_text("Canceled. No changes were made.")
        return ConversationHandler.END

    session = await _require_session(update, context)
    if session is None:
        return ConversationHandler.END

    try:
        updated = await deps.api.update_birthday(session.token, int(pending["id"]), _draft_from_pending(pending))
    except ApiError as exc:
        await _report_failure(update, context, exc, _failure_text(exc, "Failed to update birthday"))
        context.user_data.pop(PENDING_EDIT_KEY, None)
        return ConversationHandler.END

    context.user_data.pop(PENDING_EDIT_KEY, None)
    LOGGER.info("Updated birthday %s for user %s", updated.id, session.user_id)
    await update.effective_message.reply_text(
        f"Birthday updated successfully!\n\n{render_birthday_detail(updated)}"
    )
    return ConversationHandler.END


async def delete_start(update: Update, context: CallbackContext) -> int:
    session = await _require_session(update, context)
    if session is None:
        return ConversationHandler.END

    context.user_data[PENDING_DELETE_KEY] = {}
    args = context.args or []
    if args:
        return await _delete_load(update, context, session, args[0])

    if not await _select_prompt(update, context, session, "delete"):
        context.user_data.pop(PENDING_DELETE_KEY, None)
        return ConversationHandler.END
    return STATE_DELETE_SELECT


async def delete_select(update: Update, context: CallbackContext) -> int:
    if _pending(context, PENDING_DELETE_KEY) is None:
        return await _wizard_expired(update, "Delete", "delete")

    session = await _require_session(update, context)
    if session is None:
        return ConversationHandler.END
    return await _delete_load(update, context, session, _text(update))


async def _delete_load(update: Update, context: CallbackContext, session: Session, raw_id: str) -> int:
    birthday_id = _parse_id(raw_id)
    if birthday_id is None:
        await update.effective_message.reply_text("Please send the id shown in the list.")
        return STATE_DELETE_SELECT

    try:
        record = await _deps(context).api.get_birthday(session.token, birthday_id)
    except ApiError as exc:
        if exc.status_code == 404:
            await update.effective_message.reply_text("No birthday with that id. Please send an id from the list.")
            return STATE_DELETE_SELECT
        await _report_failure(update, context, exc, "Failed to load birthday")
        context.user_data.pop(PENDING_DELETE_KEY, None)
        return ConversationHandler.END

    context.user_data[PENDING_DELETE_KEY] = {"id": record.id, "friend_name": record.friend_name}
    await update.effective_message.reply_text(
        f"{render_birthday_detail(record)}\n\nDelete this birthday? Reply with yes or no."
    )
    return STATE_DELETE_CONFIRM


async def delete_confirm(update: Update, context: CallbackContext) -> int:
    deps = _deps(context)
    pending = _pending(context, PENDING_DELETE_KEY, "id")
    if pending is None:
        return await _wizard_expired(update, "Delete", "delete")

    decision = _is_yes(_text(update))
    if decision is None:
        await update.effective_message.reply_text("Please reply with yes or no.")
        return STATE_DELETE_CONFIRM

    context.user_data.pop(PENDING_DELETE_KEY, None)
    if not decision:
        await update.effective_message.reply_text("Canceled. No changes were made.")
        return ConversationHandler.END

    session = await _require_session(update, context)
    if session is None:
        return ConversationHandler.END

    try:
        await deps.api.delete_birthday(session.token, int(pending["id"]))
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to delete birthday")
        return ConversationHandler.END

    LOGGER.info("Deleted birthday %s for user %s", pending["id"], session.user_id)
    await update.effective_message.reply_text(f"Birthday for {pending['friend_name']} deleted successfully")
    return ConversationHandler.END


async def import_start(update: Update, context: CallbackContext) -> int:
    session = await _require_session(update, context)
    if session is None:
        return ConversationHandler.END

    await update.effective_message.reply_text(
        "Import birthdays from CSV.\n"
        f"Send a .csv file with columns: {CSV_EXPECTED_COLUMNS}.\n"
        "Send /cancel to stop."
    )
    return STATE_IMPORT_FILE


async def import_file(update: Update, context: CallbackContext) -> int:
    deps = _deps(context)
    session = await _require_session(update, context)
    if session is None:
        return ConversationHandler.END

    document = update.effective_message.document
    if document is None:
        await update.effective_message.reply_text("Please send the CSV as a file attachment.")
        return STATE_IMPORT_FILE

    try:
        outcome = await import_csv(deps.api, session.token, TelegramUpload(document))
    except ImportRejected as exc:
        await update.effective_message.reply_text(f"{exc}. Send a .csv file or /cancel.")
        return STATE_IMPORT_FILE
    except ApiError as exc:
        await _report_failure(update, context, exc, "Failed to import file")
        return ConversationHandler.END

    await _reply_chunks(update, render_import_outcome(outcome))
    if outcome.needs_refresh:
        await update.effective_message.reply_text(f"Imported {outcome.imported_count} birthdays!")
        await _send_refreshed_list(update, context, session)
    return ConversationHandler.END


async def import_not_a_file(update: Update, context: CallbackContext) -> int:
    await update.effective_message.reply_text("Please send the CSV as a file attachment, or /cancel.")
    return STATE_IMPORT_FILE


async def cancel_command(update: Update, context: CallbackContext) -> int:
    _clear_pending(context)
    await update.effective_message.reply_text("Wizard canceled.")
    return ConversationHandler.END


async def idle_cancel_command(update: Update, context: CallbackContext) -> None:
    _clear_pending(context)
    await update.effective_message.reply_text("Nothing to cancel.")


async def error_handler(update: object, context: CallbackContext) -> None:
    LOGGER.error("Unhandled error while processing an update", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message:
        await update.effective_message.reply_text("Something went wrong. Please try again.")


def _text_step(callback) -> list:
    return [MessageHandler(filters.TEXT & ~filters.COMMAND, callback)]


def build_handlers() -> list:
    # Every wizard must end on /cancel and /logout, whatever step it is at.
    fallbacks = [
        CommandHandler("cancel", cancel_command),
        CommandHandler("logout", logout_command),
    ]

    login_conversation = ConversationHandler(
        entry_points=[CommandHandler("login", login_start)],
        states={
            STATE_LOGIN_EMAIL: _text_step(login_email),
            STATE_LOGIN_PASSWORD: _text_step(login_password),
        },
        fallbacks=fallbacks,
        name="login_conversation",
        persistent=False,
    )

    register_conversation = ConversationHandler(
        entry_points=[CommandHandler("register", register_start)],
        states={
            STATE_REGISTER_NAME: _text_step(register_name),
            STATE_REGISTER_EMAIL: _text_step(register_email),
            STATE_REGISTER_PASSWORD: _text_step(register_password),
            STATE_REGISTER_CONFIRM: _text_step(register_confirm),
        },
        fallbacks=fallbacks,
        name="register_conversation",
        persistent=False,
    )

    add_conversation = ConversationHandler(
        entry_points=[CommandHandler("add", add_start)],
        states={
            STATE_ADD_NAME: _text_step(add_name),
            STATE_ADD_BIRTH_DATE: _text_step(add_birth_date),
            STATE_ADD_EMAIL: _text_step(add_email),
            STATE_ADD_NOTES: _text_step(add_notes),
            STATE_ADD_CATEGORY: _text_step(add_category),
            STATE_ADD_CONFIRM: _text_step(add_confirm),
        },
        fallbacks=fallbacks,
        name="add_birthday_conversation",
        persistent=False,
    )

    edit_conversation = ConversationHandler(
        entry_points=[CommandHandler("edit", edit_start)],
        states={
            STATE_EDIT_SELECT: _text_step(edit_select),
            STATE_EDIT_NAME: _text_step(edit_name),
            STATE_EDIT_BIRTH_DATE: _text_step(edit_birth_date),
            STATE_EDIT_EMAIL: _text_step(edit_email),
            STATE_EDIT_NOTES: _text_step(edit_notes),
            STATE_EDIT_CATEGORY: _text_step(edit_category),
            STATE_EDIT_ACTIVE: _text_step(edit_active),
            STATE_EDIT_CONFIRM: _text_step(edit_confirm),
        },
        fallbacks=fallbacks,
        name="edit_birthday_conversation",
        persistent=False,
    )

    delete_conversation = ConversationHandler(
        entry_points=[CommandHandler("delete", delete_start)],
        states={
            STATE_DELETE_SELECT: _text_step(delete_select),
            STATE_DELETE_CONFIRM: _text_step(delete_confirm),
        },
        fallbacks=fallbacks,
        name="delete_birthday_conversation",
        persistent=False,
    )

    import_conversation = ConversationHandler(
        entry_points=[CommandHandler("import", import_start)],
        states={
            STATE_IMPORT_FILE: [
                MessageHandler(filters.Document.ALL, import_file),
                MessageHandler(filters.TEXT & ~filters.COMMAND, import_not_a_file),
            ],
        },
        fallbacks=fallbacks,
        name="import_csv_conversation",
        persistent=False,
    )

    # Conversations go first: within a handler group the first match wins,
    # so an active wizard sees its own /cancel and /logout fallbacks.
    return [
        login_conversation,
        register_conversation,
        add_conversation,
        edit_conversation,
        delete_conversation,
        import_conversation,
        CommandHandler("start", start_command),
        CommandHandler("help", help_command),
        CommandHandler("logout", logout_command),
        CommandHandler("list", list_command),
        CommandHandler("dashboard", dashboard_command),
        CommandHandler("summary", summary_command),
        CommandHandler("export", export_command),
        CommandHandler("wishes", wishes_command),
        CommandHandler("settings", settings_command),
        CommandHandler("notifydays", notify_days_command),
        CommandHandler("notifytime", notify_time_command),
        CommandHandler("email", email_command),
        CommandHandler("template", template_command),
        CommandHandler("categories", categories_command),
        CommandHandler("newcategory", new_category_command),
        CommandHandler("editcategory", edit_category_command),
        CommandHandler("deletecategory", delete_category_command),
        CommandHandler("cancel", idle_cancel_command),
    ]
