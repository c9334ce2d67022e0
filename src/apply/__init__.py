"""Apply engine, its configuration and the command-line driver."""

from .config import PolicyConfig, load_policy
from .engine import ApplyEngine
from .journal import ResponseJournal

__all__ = ["ApplyEngine", "PolicyConfig", "ResponseJournal", "load_policy"]
