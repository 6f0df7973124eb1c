from __future__ import annotations

from runquest.store import ProgressionStore, SqlProgressionStore


def get_store() -> ProgressionStore:
    return SqlProgressionStore()
