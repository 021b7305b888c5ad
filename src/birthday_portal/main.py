from __future__ import annotations

import logging
from pathlib import Path

from telegram.ext import Application

from birthday_portal.api_client import BirthdayApiClient
from birthday_portal.bot_handlers import HandlerDependencies, build_handlers, error_handler
from birthday_portal.session import SessionStore
from birthday_portal.settings import load_settings


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request URL at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


async def shutdown_api_client(application: Application) -> None:
    deps: HandlerDependencies = application.bot_data["handler_deps"]
    await deps.api.aclose()


def main() -> None:
    configure_logging()

    settings = load_settings()
    _ensure_parent(settings.session_store_path)

    sessions = SessionStore(settings.session_store_path)
    sessions.hydrate()

    api = BirthdayApiClient(
        base_url=settings.api_base_url,
        timeout=settings.api_timeout_seconds,
    )

    application = Application.builder().token(settings.telegram_bot_token).build()
    application.bot_data["settings"] = settings
    application.bot_data["handler_deps"] = HandlerDependencies(
        settings=settings,
        api=api,
        sessions=sessions,
    )

    for handler in build_handlers():
        application.add_handler(handler)
    application.add_error_handler(error_handler)

    application.post_shutdown = shutdown_api_client
    application.run_polling()


if __name__ == "__main__":
    main()
