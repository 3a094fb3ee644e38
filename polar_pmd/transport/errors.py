# polar_pmd/transport/errors.py
from __future__ import annotations

from polar_pmd.errors import PmdError


class TransportError(PmdError):
    """Base class for transport-layer failures."""
    code = "transport_error"


class TransportIOError(TransportError):
    code = "transport_io_error"


class TransportClosedError(TransportError):
    """The link is gone; no further reads or writes are possible."""
    code = "transport_closed"
