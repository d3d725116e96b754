"""
Dotenv loading for local runs.

Developer machines keep node URLs and venue keys in ``.env`` (shared) and
``.env.local`` (personal overrides). Production takes its environment from the
process only, so ``ENVIRONMENT=prod`` skips both files.

Kept free of ``plexi_vault.config.config`` imports; config loading calls in here.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# (file name, overrides variables already set)
_DOTENV_LAYERS = ((".env", False), (".env.local", True))

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


def load_dotenv_files(*, repo_root: Path | None = None) -> list[Path]:
    """Load the dotenv layers under ``repo_root`` and return the files read."""
    environment = (os.getenv("ENVIRONMENT") or "dev").strip().lower()
    if environment == "prod":
        return []

    root = repo_root or _PROJECT_ROOT
    loaded: list[Path] = []
    for name, override in _DOTENV_LAYERS:
        path = root / name
        if path.is_file():
            load_dotenv(dotenv_path=path, override=override)
            loaded.append(path)
    return loaded
