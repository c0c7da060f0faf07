"""Path filtering for source discovery."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List, Sequence


ALWAYS_SKIP = {
    ".git",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
    ".idea",
    ".vscode",
    "dist",
    "build",
    "coverage",
    ".next",
    ".nuxt",
    ".cache",
    "vendor",
}

TEST_MARKERS = (".test.", ".spec.", ".d.")


def should_skip_dir(name: str) -> bool:
    if name in ALWAYS_SKIP:
        return True
    if name.startswith("."):
        return True
    return False


def is_candidate_source(path: Path, endings: Sequence[str]) -> bool:
    name = path.name
    if not any(name.endswith(ending) for ending in endings):
        return False
    return not any(marker in name for marker in TEST_MARKERS)


def iter_source_files(root: Path, endings: Sequence[str]) -> Iterable[Path]:
    """Yield source files depth-first, entries in sorted listing order."""
    try:
        names = sorted(os.listdir(root))
    except OSError:
        return
    for name in names:
        path = root / name
        if path.is_symlink():
            continue
        if path.is_dir():
            if should_skip_dir(name):
                continue
            yield from iter_source_files(path, endings)
        elif is_candidate_source(path, endings):
            yield path


def list_source_files(root: Path, endings: Sequence[str]) -> List[Path]:
    root = Path(root)
    if root.is_file():
        return [root] if is_candidate_source(root, endings) else []
    return list(iter_source_files(root, endings))
