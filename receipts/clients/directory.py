from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from urllib.parse import quote

import httpx

from receipts.domain.errors import DirectoryAuthError, LookupTransientError, WriteBackError
from receipts.domain.models import DirectoryContact
from receipts.domain.normalization import format_display_name, normalize_email, parse_tags
from receipts.settings import DirectorySettings

logger = logging.getLogger("runtime")

CONTACT_PROPERTIES = ("email", "firstname", "lastname", "receipt_years_available")
ID_PROPERTY = "member_id"
AUTH_STATUS_CODES = frozenset({401, 403})
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})


@dataclass
class HttpDirectoryClient:
    """CRM contact directory addressed by the member id custom property."""

    client: httpx.AsyncClient
    contacts_path: str = "/crm/v3/objects/contacts"
    _closed: bool = field(default=False, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: DirectorySettings) -> HttpDirectoryClient:
        client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers={"Authorization": f"Bearer {settings.access_token}"},
            timeout=settings.timeout_seconds,
        )
        return cls(client=client)

    async def resolve(self, *, member_id: str) -> DirectoryContact | None:
        try:
            response = await self.client.get(
                self._contact_path(member_id),
                params={"idProperty": ID_PROPERTY, "properties": ",".join(CONTACT_PROPERTIES)},
            )
        except httpx.TransportError as exc:
            raise LookupTransientError(f"directory request failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code in AUTH_STATUS_CODES:
            raise DirectoryAuthError(f"directory rejected credentials with HTTP {response.status_code}")
        if _is_transient(response.status_code):
            raise LookupTransientError(f"directory returned HTTP {response.status_code}")
        if response.is_error:
            logger.warning(
                "directory lookup rejected",
                extra={"member_id": member_id, "status_code": response.status_code},
            )
            return None

        properties = response.json().get("properties") or {}
        email = normalize_email(properties.get("email"))
        return DirectoryContact(
            member_id=member_id,
            email=email,
            display_name=format_display_name(properties.get("firstname"), properties.get("lastname"), email),
            tags=parse_tags(properties.get("receipt_years_available")),
        )

    async def write_back_tags(self, *, member_id: str, tags: Sequence[str]) -> None:
        payload = {
            "properties": {
                "receipt_portal_eligible": True,
                "receipt_years_available": ";".join(tags),
            }
        }
        try:
            response = await self.client.patch(
                self._contact_path(member_id),
                params={"idProperty": ID_PROPERTY},
                json=payload,
            )
        except httpx.TransportError as exc:
            raise WriteBackError(f"directory write-back failed: {exc}") from exc
        if response.is_error:
            raise WriteBackError(f"directory write-back returned HTTP {response.status_code}")

    async def aclose(self) -> None:
        if not self._closed:
            await self.client.aclose()
            self._closed = True

    def _contact_path(self, member_id: str) -> str:
        return f"{self.contacts_path}/{quote(member_id, safe='')}"


def _is_transient(status_code: int) -> bool:
    return status_code >= 500 or status_code in TRANSIENT_STATUS_CODES
