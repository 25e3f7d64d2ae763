"""Backend core of a minimal social network over a single JSON snapshot."""

from .service import SocialService
from .storage import SnapshotFile, Store

__all__ = ["SocialService", "SnapshotFile", "Store"]
