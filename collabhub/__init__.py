"""Project collaboration backend: access rules, invariants and cascades."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    # Core
    "Principal",
    "SuperAdminGrant",
    "MemberGrant",
    "evaluate",
    # Errors
    "CollabError",
    # Service
    "CollabSettings",
    "CollabDatabase",
    "CollabService",
    "AdminService",
    "init_engine",
    # API
    "create_app",
]

_MODULES = {
    "Principal": ".access",
    "SuperAdminGrant": ".access",
    "MemberGrant": ".access",
    "evaluate": ".access",
    "CollabError": ".errors",
    "CollabSettings": ".config",
    "CollabDatabase": ".service",
    "CollabService": ".service",
    "init_engine": ".service",
    "AdminService": ".admin",
    "create_app": ".api",
}


def __getattr__(name: str) -> Any:  # pragma: no cover - thin import shim
    if name not in _MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    value = getattr(import_module(_MODULES[name], __name__), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:  # pragma: no cover - introspection helper
    return sorted(__all__)
