"""`.env` loading for the collaboration backend."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

__all__ = ["ENV_FILE_VARIABLE", "load_env"]

# Points at an explicit env file; otherwise the nearest `.env` upwards from cwd.
ENV_FILE_VARIABLE = "COLLAB_ENV_FILE"

_loaded: Optional[tuple[Path, ...]] = None


def load_env(*, override: bool = False, reload: bool = False) -> tuple[Path, ...]:
    """Load settings files once per process and return the paths read.

    Real environment variables win unless ``override`` is set.
    """
    global _loaded

    if _loaded is not None and not (reload or override):
        return _loaded

    candidates: list[Path] = []
    explicit = os.getenv(ENV_FILE_VARIABLE)
    if explicit:
        candidates.append(Path(explicit).expanduser())
    found = find_dotenv(usecwd=True)
    if found:
        candidates.append(Path(found))

    read: list[Path] = []
    for candidate in candidates:
        resolved = candidate.resolve()
        if resolved in read or not resolved.is_file():
            continue
        load_dotenv(resolved, override=override)
        read.append(resolved)

    _loaded = tuple(read)
    return _loaded
