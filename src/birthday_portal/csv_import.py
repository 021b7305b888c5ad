from __future__ import annotations

import logging
from typing import Protocol

from birthday_portal.api_client import BirthdayApiClient
from birthday_portal.models import ImportOutcome

LOGGER = logging.getLogger(__name__)

CSV_MEDIA_TYPES = {"text/csv"}
CSV_EXPECTED_COLUMNS = "Name, Date, Email (optional), Notes (optional), Category (optional)"


class ImportRejected(ValueError):
    pass


class CsvUpload(Protocol):
    file_name: str | None
    mime_type: str | None

    async def read_bytes(self) -> bytes: ...


def is_csv_upload(file_name: str | None, mime_type: str | None) -> bool:
    if mime_type and mime_type.strip().lower() in CSV_MEDIA_TYPES:
        return True
    return bool(file_name) and file_name.strip().lower().endswith(".csv")


async def import_csv(client: BirthdayApiClient, token: str, upload: CsvUpload) -> ImportOutcome:
    """Send a CSV upload to the import endpoint and return the row outcome.

    Non-CSV uploads raise ImportRejected before the file is downloaded or the
    backend is contacted. Transport and server failures surface as ApiError;
    row-level failures are part of a successful ImportOutcome.
    """
    if not is_csv_upload(upload.file_name, upload.mime_type):
        raise ImportRejected("Please select a CSV file")

    content = await upload.read_bytes()
    if not content:
        raise ImportRejected("Please select a file")

    outcome = await client.import_csv(token, upload.file_name or "birthdays.csv", content)
    LOGGER.info(
        "CSV import finished: %s imported, %s failed",
        outcome.imported_count,
        outcome.error_count,
    )
    return outcome


def render_import_outcome(outcome: ImportOutcome) -> str:
    lines = [f"{outcome.imported_count} birthdays imported successfully"]
    if outcome.errors:
        lines.append("")
        lines.append(f"{outcome.error_count} errors:")
        lines.extend(f"- {message}" for message in outcome.errors)
    return "\n".join(lines)
