# polar_pmd/protocol/loader.py
from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Dict

import yaml


def sha256_file(path: Path) -> str:
    """SHA256 of a definitions file, lowercase hex."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(64 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class ProtocolLoader:
    """Load the PMD definition YAML files into dicts + keep per-file SHA256 hashes."""

    REQUIRED_FILES = (
        "constants.yml",
        "commands.yml",
        "measurements.yml",
        "settings.yml",
        "errors.yml",
    )

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)

        # Extracted structures used by Protocol(...)
        self.constants: Dict[str, Any] = {}
        self.commands: Dict[str, Any] = {}
        self.measurements: Dict[str, Any] = {}
        self.settings: Dict[str, Any] = {}
        self.errors: Dict[str, Any] = {}

        # File fingerprints (filename -> sha256 hex)
        self.file_hashes: Dict[str, str] = {}

    def load_all(self) -> None:
        self.file_hashes.clear()
        for fn in self.REQUIRED_FILES:
            path = self.config_dir / fn
            if not path.exists():
                raise FileNotFoundError(f"Protocol file not found: {path}")
            self.file_hashes[fn] = sha256_file(path)

        self.constants = self._load_yaml("constants.yml")
        self.commands = self._load_yaml("commands.yml").get("commands", {}) or {}
        self.measurements = self._load_yaml("measurements.yml").get("measurements", {}) or {}
        self.settings = self._load_yaml("settings.yml").get("settings", {}) or {}
        self.errors = self._load_yaml("errors.yml").get("errors", {}) or {}

        if not isinstance(self.constants, dict):
            raise ValueError("constants.yml must be a mapping")
        if not isinstance(self.commands, dict) or not self.commands:
            raise ValueError("commands.yml must contain a non-empty 'commands' mapping")
        if not isinstance(self.measurements, dict) or not self.measurements:
            raise ValueError("measurements.yml must contain a non-empty 'measurements' mapping")
        if not isinstance(self.settings, dict):
            raise ValueError("settings.yml must contain 'settings' mapping")
        if not isinstance(self.errors, dict):
            raise ValueError("errors.yml must contain 'errors' mapping")

        for name, mdef in self.measurements.items():
            if not isinstance(mdef, dict) or "code" not in mdef:
                raise ValueError(f"measurements.yml: '{name}' needs a 'code'")
            if not isinstance(mdef.get("frame_types", {}), dict):
                raise ValueError(f"measurements.yml: '{name}.frame_types' must be a mapping")

    def protocol_version(self) -> int:
        """
        Version of the definition set.
        Defaults to 0 if not specified.
        """
        v = self.constants.get("protocol_version", 0)
        try:
            return int(v)
        except Exception:
            raise ValueError(f"Invalid protocol version in constants.yml: {v!r}")

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        path = self.config_dir / filename
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
