from __future__ import annotations

import os

DEFAULT_PLAYGROUND_VERSION = "0.1.0"


def get_playground_version() -> str:
    raw_version = os.getenv("PLAYGROUND_VERSION", "").strip()
    normalized = raw_version.removeprefix("v").removeprefix("V").strip()
    return normalized or DEFAULT_PLAYGROUND_VERSION
