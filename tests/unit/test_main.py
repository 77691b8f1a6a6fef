import pytest

from receipts.main import parse_args, run


@pytest.mark.unit
def test_cli_returns_non_zero_for_invalid_role(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = run(["--role", "bad-role", "--dry-run-startup"])
    captured = capsys.readouterr()

    assert exit_code == 2
    assert captured.err.startswith("ERROR: Unknown role 'bad-role'")
    assert "api, worker-import" in captured.err


@pytest.mark.unit
@pytest.mark.parametrize("role", ["api", "worker-import"])
def test_cli_dry_run_succeeds_for_valid_role(role: str) -> None:
    assert run(["--role", role, "--dry-run-startup"]) == 0


@pytest.mark.unit
def test_cli_parses_bind_options() -> None:
    args = parse_args(["--role", "api", "--host", "127.0.0.1", "--port", "9000"])

    assert (args.role, args.host, args.port, args.reload, args.log_level) == ("api", "127.0.0.1", 9000, False, None)
