# polar_pmd/config.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from polar_pmd.errors import ConfigError
from polar_pmd.protocol.core.defs import Protocol, default_protocol


@dataclass(frozen=True)
class PmdConfig:
    protocol_dir: Optional[Path] = None     # None -> bundled definitions
    cmd_timeout_s: float = 5.0
    event_queue_size: int = 1024
    worker_join_timeout_s: float = 1.0
    start_timeout_s: float = 2.0

    def __post_init__(self) -> None:
        if self.cmd_timeout_s <= 0:
            raise ConfigError(f"cmd_timeout_s must be > 0, got {self.cmd_timeout_s}")
        if self.event_queue_size < 1:
            raise ConfigError(f"event_queue_size must be >= 1, got {self.event_queue_size}")
        if self.worker_join_timeout_s < 0 or self.start_timeout_s <= 0:
            raise ConfigError("worker_join_timeout_s must be >= 0 and start_timeout_s > 0")


def load_protocol(protocol_dir: Optional[Path] = None) -> Protocol:
    """Load PMD definitions, translating loader failures into ConfigError."""
    try:
        if protocol_dir is None:
            return default_protocol()
        return Protocol.from_dir(Path(protocol_dir))
    except (OSError, ValueError, KeyError, TypeError, yaml.YAMLError) as e:
        raise ConfigError(
            f"Failed to load protocol definitions: {e}",
            hint="check the definitions directory and its YAML files",
            details={"protocol_dir": str(protocol_dir) if protocol_dir else None},
        ) from e
