from __future__ import annotations

import logging
from typing import Any

import httpx

from birthday_portal.models import (
    Analytics,
    AuthResult,
    BirthdayDraft,
    BirthdayRecord,
    Category,
    ImportOutcome,
    NotificationSettings,
    ToneOption,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_WISH_COUNT = 5


class ApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SessionExpiredError(ApiError):
    pass


def _envelope_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return None


def _auth_result(path: str, data: Any) -> AuthResult:
    try:
        return AuthResult.from_payload(data or {})
    except (KeyError, TypeError, ValueError) as exc:
        LOGGER.warning("%s returned an unusable auth payload: %s", path, exc)
        raise ApiError(f"Unexpected response from {path}") from exc


class BirthdayApiClient:
    def __init__(self, *, base_url: str, timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            LOGGER.warning("%s %s failed: %s", method, path, exc)
            raise ApiError(f"Could not reach the birthday service: {exc}") from exc

        if response.status_code == 401 and token:
            LOGGER.info("%s %s rejected the session token", method, path)
            raise SessionExpiredError("Session expired", status_code=401)

        if response.is_error:
            message = _envelope_message(response) or f"Request failed with status {response.status_code}"
            LOGGER.warning("%s %s returned %s: %s", method, path, response.status_code, message)
            raise ApiError(message, status_code=response.status_code)

        return response

    async def _data(self, method: str, path: str, *, token: str | None = None, **kwargs: Any) -> Any:
        response = await self._send(method, path, token=token, **kwargs)
        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise ApiError(f"Unexpected response from {path}") from exc
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def _records(self, path: str, token: str, **kwargs: Any) -> list[BirthdayRecord]:
        data = await self._data("GET", path, token=token, **kwargs)
        return [BirthdayRecord.from_payload(row) for row in data or []]

    async def login(self, email: str, password: str) -> AuthResult:
        data = await self._data("POST", "/auth/login", json={"email": email, "password": password})
        return _auth_result("/auth/login", data)

    async def register(self, name: str, email: str, password: str) -> AuthResult:
        data = await self._data(
            "POST",
            "/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        return _auth_result("/auth/register", data)

    async def list_birthdays(self, token: str) -> list[BirthdayRecord]:
        return await self._records("/birthdays", token)

    async def get_birthday(self, token: str, birthday_id: int) -> BirthdayRecord:
        data = await self._data("GET", f"/birthdays/{birthday_id}", token=token)
        return BirthdayRecord.from_payload(data)

    async def create_birthday(self, token: str, draft: BirthdayDraft) -> BirthdayRecord:
        data = await self._data("POST", "/birthdays", token=token, json=draft.to_payload())
        return BirthdayRecord.from_payload(data)

    async def update_birthday(self, token: str, birthday_id: int, draft: BirthdayDraft) -> BirthdayRecord:
        data = await self._data("PUT", f"/birthdays/{birthday_id}", token=token, json=draft.to_payload())
        return BirthdayRecord.from_payload(data)

    async def delete_birthday(self, token: str, birthday_id: int) -> None:
        await self._send("DELETE", f"/birthdays/{birthday_id}", token=token)

    async def upcoming_birthdays(self, token: str, days: int = 30) -> list[BirthdayRecord]:
        return await self._records("/birthdays/upcoming", token, params={"days": days})

    async def analytics(self, token: str) -> Analytics:
        data = await self._data("GET", "/birthdays/analytics", token=token)
        return Analytics.from_payload(data or {})

    async def import_csv(self, token: str, file_name: str, content: bytes) -> ImportOutcome:
        data = await self._data(
            "POST",
            "/birthdays/import",
            token=token,
            files={"file": (file_name, content, "text/csv")},
        )
        return ImportOutcome.from_payload(data or {})

    async def export_ical(self, token: str | None) -> bytes:
        response = await self._send(
            "GET",
            "/birthdays/export/ical",
            token=token,
            headers={"Accept": "text/calendar"},
        )
        return response.content

    async def list_categories(self, token: str) -> list[Category]:
        data = await self._data("GET", "/categories", token=token)
        return [Category.from_payload(row) for row in data or []]

    async def get_category(self, token: str, category_id: int) -> Category:
        data = await self._data("GET", f"/categories/{category_id}", token=token)
        return Category.from_payload(data)

    async def create_category(self, token: str, category: Category) -> Category:
        data = await self._data("POST", "/categories", token=token, json=category.to_payload())
        return Category.from_payload(data)

    async def update_category(self, token: str, category: Category) -> Category:
        data = await self._data(
            "PUT",
            f"/categories/{category.id}",
            token=token,
            json=category.to_payload(),
        )
        return Category.from_payload(data)

    async def delete_category(self, token: str, category_id: int) -> None:
        await self._send("DELETE", f"/categories/{category_id}", token=token)

    async def get_settings(self, token: str) -> NotificationSettings:
        data = await self._data("GET", "/settings", token=token)
        return NotificationSettings.from_payload(data or {})

    async def update_settings(self, token: str, settings: NotificationSettings) -> NotificationSettings:
        data = await self._data("PUT", "/settings", token=token, json=settings.to_payload())
        return NotificationSettings.from_payload(data or {})

    async def wishes(
        self,
        token: str,
        birthday_id: int,
        *,
        count: int = DEFAULT_WISH_COUNT,
        tone: str | None = None,
    ) -> list[str]:
        params: dict[str, Any] = {"count": count}
        if tone:
            params["tone"] = tone
        data = await self._data("GET", f"/wishes/{birthday_id}", token=token, params=params)
        return [str(wish) for wish in data or []]

    async def wish_tones(self, token: str) -> list[ToneOption]:
        data = await self._data("GET", "/wishes/tones", token=token)
        return [ToneOption.from_payload(row) for row in data or []]
