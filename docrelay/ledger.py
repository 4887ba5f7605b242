"""Processed-UID ledger: exactly-once bookkeeping for one run."""

from __future__ import annotations


class ProcessedLedger:
    """Append-only set of processed UIDs plus the watermark.

    The watermark is the highest processed UID.  UIDs whose pipeline run
    failed are remembered as retry candidates so the search floor stays
    below them even after a higher UID succeeds.  Nothing is pruned
    within a run; the ledger outlives any single IMAP session.
    """

    def __init__(self) -> None:
        self._processed: set[int] = set()
        self._retry: set[int] = set()
        self._watermark = 0

    def __contains__(self, uid: object) -> bool:
        return uid in self._processed

    def __len__(self) -> int:
        return len(self._processed)

    @property
    def watermark(self) -> int:
        return self._watermark

    @property
    def pending_retries(self) -> frozenset[int]:
        return frozenset(self._retry)

    @property
    def search_floor(self) -> int:
        """Highest UID that no longer needs to be searched for."""
        if self._retry:
            return min(self._watermark, min(self._retry) - 1)
        return self._watermark

    def mark_processed(self, uid: int) -> None:
        self._processed.add(uid)
        self._retry.discard(uid)
        if uid > self._watermark:
            self._watermark = uid

    def mark_failed(self, uid: int) -> None:
        if uid not in self._processed:
            self._retry.add(uid)
