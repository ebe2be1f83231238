from __future__ import annotations

import dataclasses
import json
import logging
import os
import sys
from dataclasses import asdict
from typing import Any, Dict, Optional

from .bq.client import get_client
from .bq.jobs import bytes_human
from .config import ConfigLoader, options_from_config
from .errors import FetchError, JobExecutionError, PollTimeout, QueryError
from .gcloud import resolve_location, resolve_project
from .models import CreateDisposition, QueryOptions, WriteDisposition
from .orchestrator import QueryOrchestrator

logger = logging.getLogger(__name__)


def _as_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"expected true or false, got {value!r}")
    return value


_OVERRIDABLE = {
    "page_size": int,
    "max_pages": int,
    "warn_on_truncation": _as_bool,
    "use_legacy_sql": _as_bool,
    "quiet": _as_bool,
    "create_disposition": CreateDisposition,
    "write_disposition": WriteDisposition,
}


def _options_for(payload: Dict[str, Any], config: Dict[str, Any]) -> QueryOptions:
    options = options_from_config(config)
    overrides = {
        key: convert(payload[key])
        for key, convert in _OVERRIDABLE.items()
        if payload.get(key) is not None
    }
    return dataclasses.replace(options, **overrides)


def _build_orchestrator(payload: Dict[str, Any], config: Dict[str, Any]) -> QueryOrchestrator:
    project = resolve_project(payload.get("project"), config)
    if not project:
        raise ValueError("No project given and no default project configured.")
    location = resolve_location(payload.get("location"), config)
    return QueryOrchestrator(
        get_client(project),
        project,
        location=location,
        options=_options_for(payload, config),
    )


def _error_response(message: str, exc: Exception) -> Dict[str, Any]:
    error: Dict[str, Any] = {"message": message, "detail": str(exc)}
    if isinstance(exc, QueryError):
        error["job_id"] = exc.job_id
        error["last_state"] = exc.last_state.value if exc.last_state else None
    if isinstance(exc, JobExecutionError):
        error["reason"] = exc.reason
        error["errors"] = exc.errors
    if isinstance(exc, FetchError):
        error["partial_rows"] = exc.rows
        error["partial_pages"] = len(exc.pages)
    if isinstance(exc, PollTimeout):
        error["attempts"] = exc.attempts
    return {"ok": False, "error": error}


def handle_request(payload: Dict[str, Any], config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    config = config or ConfigLoader().load()
    op = payload.get("op")
    sql = payload.get("sql")

    if op in {"query", "dry_run"}:
        if not sql:
            return {"ok": False, "error": {"message": "SQL is required."}}
        try:
            orchestrator = _build_orchestrator(payload, config)
        except ValueError as exc:
            return {"ok": False, "error": {"message": "Invalid request.", "detail": str(exc)}}

        if op == "dry_run":
            try:
                stats = orchestrator.dry_run(
                    sql,
                    destination_table=payload.get("destination_table"),
                    default_dataset=payload.get("default_dataset"),
                )
            except QueryError as exc:
                return _error_response("Dry run failed.", exc)
            except ValueError as exc:
                return {"ok": False, "error": {"message": "Invalid request.", "detail": str(exc)}}
            return {
                "ok": True,
                "project": orchestrator.project,
                "dry_run": dict(asdict(stats), bytes_human=bytes_human(stats.total_bytes_processed)),
            }

        try:
            result = orchestrator.run(
                sql,
                destination_table=payload.get("destination_table"),
                default_dataset=payload.get("default_dataset"),
            )
        except QueryError as exc:
            return _error_response("Query failed.", exc)
        except ValueError as exc:
            return {"ok": False, "error": {"message": "Invalid request.", "detail": str(exc)}}
        return {
            "ok": True,
            "project": orchestrator.project,
            "query": {
                "job_id": result.job.job_id,
                "destination": result.location.table_id_str,
                "columns": result.columns,
                "rows": result.rows,
                "total_rows": result.total_rows,
                "truncated": result.truncated,
                "statistics": asdict(result.statistics) if result.statistics else None,
            },
        }

    if op == "get_effective_config":
        return {
            "ok": True,
            "config": config,
            "paths": {"config": ConfigLoader().config_path},
        }

    return {"ok": False, "error": {"message": f"Unknown op {op}."}}


def _setup_logging() -> None:
    # stdout carries the response protocol, so logs go to stderr.
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def main() -> None:
    _setup_logging()
    config = ConfigLoader().load()
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
            response = handle_request(payload, config)
        except Exception as exc:
            logger.exception("Unhandled error")
            response = {"ok": False, "error": {"message": "Unhandled error", "detail": str(exc)}}
        sys.stdout.write(json.dumps(response, ensure_ascii=False, default=str) + "\n")
        sys.stdout.flush()


if __name__ == "__main__":
    main()
