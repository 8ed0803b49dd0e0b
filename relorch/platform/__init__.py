"""Process and filesystem primitives used by the external adapters."""

from .files import atomic_write_text, exclusive_lock
from .process import ProcessError, is_transient, run

__all__ = ["ProcessError", "atomic_write_text", "exclusive_lock", "is_transient", "run"]
