"""
Draft Store

Session-scoped memory that outlives a single composition view: the draft
pointer (which persisted invoice holds this session's autosaved work) and
the edit marker (which persisted invoice is being edited). Only the
persistence orchestrator writes here.
"""

import asyncio
import logging
from typing import Dict, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class DraftPointer(BaseModel):
    """Where this session's abandoned draft lives and what it was for."""

    invoice_id: str
    customer_id: Optional[str] = None
    vehicle_id: Optional[str] = None


class DraftStore:
    """In-memory, per-session pointer storage"""

    def __init__(self):
        self._pointers: Dict[str, DraftPointer] = {}
        self._edit_markers: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get_pointer(self, key: str) -> Optional[DraftPointer]:
        return self._pointers.get(key)

    def set_pointer(self, key: str, pointer: DraftPointer):
        self._pointers[key] = pointer
        logger.debug(f"Draft pointer for session {key} -> {pointer.invoice_id}")

    def get_edit_marker(self, key: str) -> Optional[str]:
        return self._edit_markers.get(key)

    def set_edit_marker(self, key: str, invoice_id: str):
        self._edit_markers[key] = invoice_id

    def clear_pointer(self, key: str):
        self._pointers.pop(key, None)

    def clear_edit_marker(self, key: str):
        self._edit_markers.pop(key, None)

    def clear(self, key: str):
        """Drop both the draft pointer and the edit marker for a session"""
        self._pointers.pop(key, None)
        self._edit_markers.pop(key, None)
        logger.debug(f"Cleared draft pointer and edit marker for session {key}")

    def lock(self, key: str) -> asyncio.Lock:
        """Lock serializing save decisions for one session"""
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]


# Global draft store instance
_draft_store: Optional[DraftStore] = None


def get_draft_store() -> DraftStore:
    """Get the process-wide draft store"""
    global _draft_store
    if _draft_store is None:
        _draft_store = DraftStore()
    return _draft_store


def reset_draft_store():
    """Reset the global draft store (useful for testing)."""
    global _draft_store
    _draft_store = None
