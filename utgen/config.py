"""Environment-backed configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ConfigError

API_KEY = "AI_PROVIDER_API_KEY"
REQUIRED_KEYS = (API_KEY,)
_QUOTES = ("'", '"')


def parse_env_line(line: str) -> Optional[Tuple[str, str]]:
    """Split one ``KEY=value`` line; comments, blanks and junk yield None."""
    text = line.strip()
    if text.startswith("export "):
        text = text[len("export "):].lstrip()
    if not text or text.startswith("#") or "=" not in text:
        return None
    key, _, value = text.partition("=")
    key, value = key.strip(), value.strip()
    if not key:
        return None
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
        value = value[1:-1]
    return key, value


def load_env_file(path: Path) -> List[str]:
    """Export the assignments in a dotenv file, returning the keys it set.

    Variables already present in the environment are left untouched and a
    missing file is simply skipped.
    """
    try:
        lines = Path(path).read_text(encoding="utf-8", errors="replace").splitlines()
    except (FileNotFoundError, IsADirectoryError):
        return []
    applied: List[str] = []
    for line in lines:
        entry = parse_env_line(line)
        if entry is None or entry[0] in os.environ:
            continue
        os.environ[entry[0]] = entry[1]
        applied.append(entry[0])
    return applied


def default_env_files() -> List[Path]:
    return [Path.cwd() / ".env", Path.home() / ".env"]


@dataclass
class Config:
    required_keys: Iterable[str] = REQUIRED_KEYS
    env_files: Optional[List[Path]] = None
    values: Dict[str, str] = field(default_factory=dict)

    def fetch_config(self) -> None:
        """Load every required key, raising ConfigError naming the missing ones."""
        for env_file in self.env_files if self.env_files is not None else default_env_files():
            load_env_file(env_file)
        missing: List[str] = []
        loaded: Dict[str, str] = {}
        for key in self.required_keys:
            value = os.environ.get(key, "").strip()
            if not value:
                missing.append(key)
                continue
            loaded[key] = value
        if missing:
            raise ConfigError(
                "Missing environment variable(s): " + ", ".join(missing)
            )
        self.values = loaded

    def value(self, key: str) -> str:
        if key not in self.values:
            raise ConfigError(f"Config value not loaded: {key}")
        return self.values[key]
