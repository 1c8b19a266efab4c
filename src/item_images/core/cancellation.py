"""Cooperative cancellation shared by the services and the workflow."""

import threading
from typing import Optional

from .exceptions import PipelineCancelled


class CancellationToken:
    """Cooperative cancellation flag checked after every blocking step."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self._event.is_set():
            raise PipelineCancelled(f"Cancelled after {stage}" if stage else "Cancelled")


def check_cancelled(token: Optional[CancellationToken], stage: str) -> None:
    """Raise PipelineCancelled if an optional token has been set."""
    if token is not None:
        token.raise_if_cancelled(stage)
