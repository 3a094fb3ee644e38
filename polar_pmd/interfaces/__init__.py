# polar_pmd/interfaces/__init__.py

from .command_sink import CommandEvent, CommandSink
from .event_handler import DecodeContext, EventHandler

__all__ = ["CommandEvent", "CommandSink", "DecodeContext", "EventHandler"]
