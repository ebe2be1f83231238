from __future__ import annotations

import os
import subprocess
from typing import Any, Dict, Optional


def _get_value(key: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["gcloud", "config", "get-value", key],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        return None
    if result.returncode != 0:
        return None
    value = result.stdout.strip()
    if value in {"", "(unset)"}:
        return None
    return value


def get_default_project() -> Optional[str]:
    return os.environ.get("GOOGLE_CLOUD_PROJECT") or _get_value("project")


def resolve_project(explicit: Optional[str], config: Dict[str, Any]) -> Optional[str]:
    return explicit or config["app"].get("default_project") or get_default_project()


def resolve_location(explicit: Optional[str], config: Dict[str, Any]) -> Optional[str]:
    # BigQuery infers the location from the referenced datasets when unset.
    return explicit or config["app"].get("default_location")
