from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from receipts.domain.contracts import STORAGE_PREFIXES
from receipts.domain.errors import (
    DirectoryAuthError,
    GenerationDependencyError,
    LookupTransientError,
    WriteBackError,
)
from receipts.domain.models import DirectoryContact, ReceiptFields


@dataclass
class StubStorageClient:
    writes: list[str] = field(default_factory=list)
    reads: list[str] = field(default_factory=list)
    objects: dict[str, bytes] = field(default_factory=dict)

    def put_bytes(self, *, key: str, payload: bytes) -> str:
        if not any(key.startswith(prefix) for prefix in STORAGE_PREFIXES):
            raise ValueError("storage key must start with an allowed prefix")
        self.writes.append(key)
        self.objects[key] = payload
        return f"s3://{key}"

    def get_bytes(self, *, key: str) -> bytes:
        self.reads.append(key)
        payload = self.objects.get(key)
        if payload is None:
            raise KeyError(f"storage key not found: {key}")
        return payload


@dataclass
class StubDirectoryClient:
    """In-memory directory. Unknown member ids resolve to not-found."""

    contacts: dict[str, DirectoryContact] = field(default_factory=dict)
    # member_id -> number of upcoming lookups that fail transiently; -1 fails forever.
    transient_failures: dict[str, int] = field(default_factory=dict)
    failing_write_backs: set[str] = field(default_factory=set)
    unauthorized: bool = False
    lookups: list[str] = field(default_factory=list)
    write_backs: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def add_contact(
        self,
        member_id: str,
        *,
        email: str | None,
        display_name: str = "",
        tags: Sequence[str] = (),
    ) -> None:
        self.contacts[member_id] = DirectoryContact(
            member_id=member_id,
            email=email,
            display_name=display_name or email or "(unknown)",
            tags=tuple(tags),
        )

    async def resolve(self, *, member_id: str) -> DirectoryContact | None:
        self.lookups.append(member_id)
        if self.unauthorized:
            raise DirectoryAuthError("directory rejected the access token")
        remaining = self.transient_failures.get(member_id, 0)
        if remaining != 0:
            if remaining > 0:
                self.transient_failures[member_id] = remaining - 1
            raise LookupTransientError(f"directory unavailable for {member_id}")
        return self.contacts.get(member_id)

    async def write_back_tags(self, *, member_id: str, tags: Sequence[str]) -> None:
        if member_id in self.failing_write_backs:
            raise WriteBackError(f"write-back rejected for {member_id}")
        self.write_backs[member_id] = tuple(tags)
        contact = self.contacts.get(member_id)
        if contact is not None:
            self.contacts[member_id] = DirectoryContact(
                member_id=contact.member_id,
                email=contact.email,
                display_name=contact.display_name,
                tags=tuple(tags),
            )


@dataclass
class StubReceiptRenderer:
    rendered: list[ReceiptFields] = field(default_factory=list)
    template_available: bool = True

    def render(self, fields: ReceiptFields) -> bytes:
        if not self.template_available:
            raise GenerationDependencyError("receipt template is not found")
        self.rendered.append(fields)
        return f"%PDF-stub {fields.name} {fields.period} {fields.amount} {fields.issue_date}".encode("utf-8")
