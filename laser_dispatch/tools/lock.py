from __future__ import annotations

import os

from laser_dispatch.services.ledger import KeyValueStore


class RunInProgressError(RuntimeError):
    pass


class RunLock:
    """
    Short-lived "run in progress" marker kept in the ledger store.
    Best effort: check-then-put is not atomic across processes.
    A crashed run's lock lapses after timeout_seconds.
    """

    def __init__(self, store: KeyValueStore, pipeline: str, timeout_seconds: int = 15 * 60):
        self.store = store
        self.key = f"runlock:{pipeline}"
        self.timeout_seconds = timeout_seconds

    def __enter__(self):
        holder = self.store.get(self.key)
        if holder is not None:
            raise RunInProgressError(
                f"Another run is already in progress (lock held by {holder})."
            )

        self.store.put(self.key, str(os.getpid()), self.timeout_seconds)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.store.delete(self.key)
