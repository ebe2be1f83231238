from __future__ import annotations

import copy
import json
import logging
import os
from typing import Any, Dict, Optional

import yaml
from platformdirs import user_config_dir

from .models import CreateDisposition, PollPolicy, QueryOptions, WriteDisposition

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "app": {
        "default_project": None,
        "default_location": None,
        "query": {
            "page_size": 10000,
            "max_pages": 10,
            "warn_on_truncation": True,
            "create_disposition": "CREATE_IF_NEEDED",
            "write_disposition": "WRITE_EMPTY",
            "use_legacy_sql": True,
            "quiet": False,
        },
        "poll": {
            "initial_delay_ms": 500,
            "max_delay_ms": 10000,
            "backoff_factor": 2,
            "timeout_seconds": 21600,
            "max_attempts": 0,
        },
        "bq": {
            "use_query_cache": True,
            "labels": {
                "app": "bq-query",
            },
        },
    }
}


class ConfigLoader:
    def __init__(self, config_path: Optional[str] = None) -> None:
        self.config_dir = user_config_dir("bq_query")
        self.config_path = config_path or f"{self.config_dir}/config.yaml"
        self._config = None

    def load(self) -> Dict[str, Any]:
        if self._config is not None:
            return self._config
        data = copy.deepcopy(DEFAULT_CONFIG)
        try:
            with open(self.config_path, "r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
            if isinstance(loaded, dict):
                data = self._merge(data, loaded)
            else:
                logger.warning(
                    "Ignoring config %s: expected a mapping, got %s",
                    self.config_path,
                    type(loaded).__name__,
                )
        except FileNotFoundError:
            self._ensure_default_written(data)
        except yaml.YAMLError as exc:
            logger.warning("Ignoring unreadable config %s: %s", self.config_path, exc)
        self._config = self._validate(data)
        return self._config

    def _ensure_default_written(self, data: Dict[str, Any]) -> None:
        try:
            config_dir = os.path.dirname(self.config_path)
            if config_dir:
                os.makedirs(config_dir, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as handle:
                yaml.safe_dump(data, handle, sort_keys=False)
        except OSError as exc:
            logger.debug("Could not write default config to %s: %s", self.config_path, exc)

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                base[key] = self._merge(base[key], value)
            elif isinstance(base.get(key), dict):
                logger.warning("Ignoring config section %r: expected a mapping", key)
            else:
                base[key] = value
        return base

    def _validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        def lookup(path: str) -> Any:
            current = data
            for part in path.split("."):
                current = current[part]
            return current

        def safe_int(path: str, default: int, minimum: int = 0) -> int:
            try:
                value = lookup(path)
            except (KeyError, TypeError):
                return default
            if isinstance(value, int) and not isinstance(value, bool) and value >= minimum:
                return value
            return default

        def safe_float(path: str, default: float, minimum: float = 0) -> float:
            try:
                value = lookup(path)
            except (KeyError, TypeError):
                return default
            if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= minimum:
                return value
            return default

        def safe_bool(path: str, default: bool) -> bool:
            try:
                value = lookup(path)
            except (KeyError, TypeError):
                return default
            return value if isinstance(value, bool) else default

        def safe_choice(path: str, choices: Any, default: str) -> str:
            try:
                value = lookup(path)
            except (KeyError, TypeError):
                return default
            return value if value in {choice.value for choice in choices} else default

        query = data["app"]["query"]
        query["page_size"] = safe_int("app.query.page_size", 10000, minimum=1)
        query["max_pages"] = safe_int("app.query.max_pages", 10, minimum=1)
        query["warn_on_truncation"] = safe_bool("app.query.warn_on_truncation", True)
        query["use_legacy_sql"] = safe_bool("app.query.use_legacy_sql", True)
        query["quiet"] = safe_bool("app.query.quiet", False)
        query["create_disposition"] = safe_choice(
            "app.query.create_disposition", CreateDisposition, "CREATE_IF_NEEDED"
        )
        query["write_disposition"] = safe_choice(
            "app.query.write_disposition", WriteDisposition, "WRITE_EMPTY"
        )

        poll = data["app"]["poll"]
        poll["initial_delay_ms"] = safe_int("app.poll.initial_delay_ms", 500, minimum=1)
        poll["max_delay_ms"] = safe_int("app.poll.max_delay_ms", 10000, minimum=1)
        poll["backoff_factor"] = safe_float("app.poll.backoff_factor", 2, minimum=1)
        poll["timeout_seconds"] = safe_int("app.poll.timeout_seconds", 21600)
        poll["max_attempts"] = safe_int("app.poll.max_attempts", 0)

        data["app"]["bq"]["use_query_cache"] = safe_bool("app.bq.use_query_cache", True)
        return data

    def as_json(self) -> str:
        return json.dumps(self.load())


def options_from_config(config: Dict[str, Any]) -> QueryOptions:
    """Build the explicit per-call options from a loaded configuration.

    Zero ``timeout_seconds`` or ``max_attempts`` means the bound is disabled.
    """
    query = config["app"]["query"]
    poll = config["app"]["poll"]
    bq = config["app"]["bq"]
    policy = PollPolicy(
        initial_delay=poll["initial_delay_ms"] / 1000.0,
        max_delay=poll["max_delay_ms"] / 1000.0,
        backoff_factor=float(poll["backoff_factor"]),
        timeout=float(poll["timeout_seconds"]) or None,
        max_attempts=poll["max_attempts"] or None,
    )
    return QueryOptions(
        page_size=query["page_size"],
        max_pages=query["max_pages"],
        warn_on_truncation=query["warn_on_truncation"],
        poll=policy,
        create_disposition=CreateDisposition(query["create_disposition"]),
        write_disposition=WriteDisposition(query["write_disposition"]),
        use_legacy_sql=query["use_legacy_sql"],
        quiet=query["quiet"],
        use_query_cache=bq["use_query_cache"],
        labels={str(k): str(v) for k, v in (bq.get("labels") or {}).items()},
    )
