from __future__ import annotations

from dataclasses import dataclass

from receipts.domain.models import MessageType

API_ROLE = "api"
IMPORT_WORKER_ROLE = "worker-import"

# Queue message types each role consumes. The api role only produces.
ROLE_MESSAGE_TYPES: dict[str, frozenset[MessageType]] = {
    API_ROLE: frozenset(),
    IMPORT_WORKER_ROLE: frozenset({MessageType.PARSE, MessageType.PROCESS}),
}

SUPPORTED_ROLES = tuple(ROLE_MESSAGE_TYPES)


@dataclass(frozen=True)
class RuntimeRole:
    name: str

    @property
    def consumes(self) -> frozenset[MessageType]:
        return ROLE_MESSAGE_TYPES[self.name]

    @property
    def runs_worker(self) -> bool:
        return bool(self.consumes)


def validate_role(role: str) -> RuntimeRole:
    normalized = role.strip().lower()
    if normalized in ROLE_MESSAGE_TYPES:
        return RuntimeRole(name=normalized)

    raise ValueError(
        f"Unknown role '{role}'; expected one of: {', '.join(SUPPORTED_ROLES)}. "
        "Schema migrations run from db/migrations, not as an app role."
    )
