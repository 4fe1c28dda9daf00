"""Deployment profile checks.

``LINKSY_REQUIRE_TRUESTACK=true`` marks a production deployment: state must
live in PostgreSQL and blobs in S3. The factories call :func:`require_backend`
so a misconfigured process fails at import time instead of silently keeping
data in memory or on local disk.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

TRUE_STACK_SETTING = "LINKSY_REQUIRE_TRUESTACK"
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def env_flag(env: Mapping[str, str], name: str, *, default: bool = False) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in _TRUE_VALUES


def true_stack_required(environ: Mapping[str, str] | None = None) -> bool:
    return env_flag(os.environ if environ is None else environ, TRUE_STACK_SETTING)


def require_backend(setting: str, *, actual: str, required: str, environ: Mapping[str, str] | None = None) -> None:
    if actual != required and true_stack_required(environ):
        raise RuntimeError(f"{setting} must be {required} when {TRUE_STACK_SETTING}=true")
