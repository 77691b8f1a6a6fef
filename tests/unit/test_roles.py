import pytest

from receipts.domain.models import MessageType
from receipts.roles import SUPPORTED_ROLES, validate_role


@pytest.mark.unit
@pytest.mark.parametrize("role", SUPPORTED_ROLES)
def test_supported_role_is_accepted(role: str) -> None:
    assert validate_role(role).name == role


@pytest.mark.unit
def test_role_names_are_normalized() -> None:
    assert validate_role("  Worker-Import ").name == "worker-import"


@pytest.mark.unit
def test_only_the_import_worker_consumes_queue_messages() -> None:
    api = validate_role("api")
    worker = validate_role("worker-import")

    assert api.runs_worker is False
    assert api.consumes == frozenset()
    assert worker.runs_worker is True
    assert worker.consumes == {MessageType.PARSE, MessageType.PROCESS}


@pytest.mark.unit
def test_unknown_role_is_rejected_with_the_supported_list() -> None:
    with pytest.raises(ValueError) as exc_info:
        validate_role("worker-unknown")

    message = str(exc_info.value)
    assert "Unknown role 'worker-unknown'" in message
    assert "api, worker-import" in message
    assert "db/migrations" in message
