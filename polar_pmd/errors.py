# polar_pmd/errors.py
from __future__ import annotations


class PmdError(Exception):
    """
    Base class for all expected operational errors in polar_pmd.
    """

    #: Stable machine-readable identifier (for log correlation, exit mapping, etc.)
    code: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ConfigError(PmdError):
    """
    Protocol definitions or runtime configuration are invalid.

    Examples:
      - definitions directory missing a required YAML file
      - duplicate opcode / measurement code
      - unknown field type in a frame layout
    """
    code = "config_error"
