"""Caller-supplied cancellation signal helpers."""
from __future__ import annotations

import threading
from typing import Optional

from .errors import OperationCancelled

CancelSignal = Optional[threading.Event]


def raise_if_cancelled(cancel: CancelSignal, *, operation: str, component: Optional[str] = None) -> None:
    """Raise OperationCancelled if the signal has been set."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelled("operation cancelled", component=component, operation=operation)


__all__ = ["CancelSignal", "raise_if_cancelled"]
