from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest

from birthday_portal.api_client import ApiError
from birthday_portal.csv_import import ImportRejected, import_csv, is_csv_upload, render_import_outcome
from birthday_portal.models import ImportOutcome


@dataclass
class FakeUpload:
    file_name: str | None
    mime_type: str | None
    content: bytes = b"Name,Date\nAnn,1990-01-01\n"
    reads: int = 0

    async def read_bytes(self) -> bytes:
        self.reads += 1
        return self.content


@dataclass
class FakeApi:
    outcome: ImportOutcome | None = None
    error: ApiError | None = None
    calls: list[tuple[str, str, bytes]] = field(default_factory=list)

    async def import_csv(self, token: str, file_name: str, content: bytes) -> ImportOutcome:
        self.calls.append((token, file_name, content))
        if self.error is not None:
            raise self.error
        return self.outcome


@pytest.mark.parametrize(
    ("file_name", "mime_type", "expected"),
    [
        ("friends.csv", None, True),
        ("FRIENDS.CSV", "application/octet-stream", True),
        ("export", "text/csv", True),
        ("friends.txt", "text/plain", False),
        (None, None, False),
    ],
)
def test_is_csv_upload(file_name: str | None, mime_type: str | None, expected: bool) -> None:
    assert is_csv_upload(file_name, mime_type) is expected


def test_non_csv_file_is_rejected_without_network_call() -> None:
    api = FakeApi(outcome=ImportOutcome(imported_count=1, error_count=0))
    upload = FakeUpload(file_name="notes.txt", mime_type="text/plain")

    with pytest.raises(ImportRejected, match="CSV"):
        asyncio.run(import_csv(api, "tok", upload))

    assert api.calls == []
    assert upload.reads == 0


def test_partial_import_is_a_success_that_triggers_refresh() -> None:
    api = FakeApi(outcome=ImportOutcome(imported_count=3, error_count=1, errors=("row 2: invalid date",)))
    upload = FakeUpload(file_name="friends.csv", mime_type="text/csv")

    outcome = asyncio.run(import_csv(api, "tok", upload))

    assert len(api.calls) == 1
    assert api.calls[0][:2] == ("tok", "friends.csv")
    assert outcome.needs_refresh is True

    rendered = render_import_outcome(outcome)
    error_lines = [line for line in rendered.splitlines() if line.startswith("- ")]
    assert error_lines == ["- row 2: invalid date"]
    assert "1 errors:" in rendered
    assert rendered.startswith("3 birthdays imported successfully")


def test_nothing_imported_does_not_refresh() -> None:
    outcome = ImportOutcome(imported_count=0, error_count=2, errors=("Line 2: Name is required", "Line 3: x"))

    assert outcome.needs_refresh is False
    assert render_import_outcome(outcome).count("\n- ") == 2


def test_clean_import_renders_without_error_section() -> None:
    rendered = render_import_outcome(ImportOutcome(imported_count=5, error_count=0))

    assert rendered == "5 birthdays imported successfully"


def test_server_failure_propagates_as_api_error() -> None:
    api = FakeApi(error=ApiError("Failed to read CSV file", status_code=400))
    upload = FakeUpload(file_name="friends.csv", mime_type="text/csv")

    with pytest.raises(ApiError):
        asyncio.run(import_csv(api, "tok", upload))

    assert len(api.calls) == 1


def test_empty_csv_is_rejected_locally() -> None:
    api = FakeApi(outcome=ImportOutcome(imported_count=0, error_count=0))
    upload = FakeUpload(file_name="friends.csv", mime_type="text/csv", content=b"")

    with pytest.raises(ImportRejected):
        asyncio.run(import_csv(api, "tok", upload))

    assert api.calls == []


def test_outcome_payload_defaults_error_count_to_error_list() -> None:
    outcome = ImportOutcome.from_payload({"importedCount": 2, "errors": ["Line 4: Invalid date format"]})

    assert outcome.error_count == 1
    assert outcome.errors == ("Line 4: Invalid date format",)
