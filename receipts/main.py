from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid

import uvicorn

from receipts.api.http_app import build_app
from receipts.logging_setup import configure_logging
from receipts.roles import API_ROLE, RuntimeRole, validate_role
from receipts.services.bootstrap import build_runtime_container

DEFAULT_PORTS = {API_ROLE: 8000}
WORKER_PORT = 8100

logger = logging.getLogger("runtime")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Receipt import service (api or import worker)")
    parser.add_argument("--role", required=True, help="api | worker-import")
    parser.add_argument("--host", default=os.getenv("APP_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=None, help="defaults to 8000 for api, 8100 for workers")
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    parser.add_argument("--dry-run-startup", action="store_true", help="validate the role and exit")
    parser.add_argument("--reload", action="store_true", help="restart on code changes (dev only)")
    return parser.parse_args(argv)


def _build_role_app(role: RuntimeRole, run_id: str) -> object:
    container = build_runtime_container(role)
    return build_app(
        role=role.name,
        run_id=run_id,
        worker_loop=container.worker_loop,
        api_deps=container.api_deps,
        on_startup=container.on_startup,
        on_shutdown=container.on_shutdown,
    )


def create_runtime_app() -> object:
    """uvicorn factory used by --reload; the role comes from APP_ROLE."""
    configure_logging()
    role = validate_role(os.getenv("APP_ROLE", API_ROLE))
    return _build_role_app(role, str(uuid.uuid4()))


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        role = validate_role(args.role)
    except ValueError as exc:
        sys.stderr.write(f"ERROR: {exc}\n")
        return 2

    configure_logging(args.log_level)
    run_id = str(uuid.uuid4())
    context = {"role": role.name, "service": role.name, "run_id": run_id}
    logger.info("runtime initialized", extra=context)

    if args.dry_run_startup:
        logger.info("dry-run startup complete", extra=context)
        return 0

    port = args.port or DEFAULT_PORTS.get(role.name, WORKER_PORT)
    if args.reload:
        os.environ["APP_ROLE"] = role.name
        uvicorn.run(
            "receipts.main:create_runtime_app",
            factory=True,
            reload=True,
            host=args.host,
            port=port,
            log_level="warning",
        )
        return 0

    uvicorn.run(_build_role_app(role, run_id), host=args.host, port=port, log_level="warning")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
