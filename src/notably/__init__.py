"""Notably temporal fact store.

An append-only, versioned key-value layer: every write becomes a new
immutable Fact version, deletions append tombstones, and any namespace can
be reconstructed as of an arbitrary past instant.
"""

__version__ = "0.1.0"

# Expose submodules for easier imports and to support unittest.mock patching
from . import models
from . import query
from . import storage
from . import store

__all__ = ["__version__", "models", "query", "storage", "store"]
