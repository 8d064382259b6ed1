from __future__ import annotations

from typing import Optional

from .models import ScanCancelled


class CancelToken:
    """Cooperative cancellation flag checked by page and batch loops."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        self._cancelled = True
        self.reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ScanCancelled(self.reason or "cancelled")


def check(token: Optional[CancelToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()
