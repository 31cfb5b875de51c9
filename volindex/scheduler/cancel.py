"""Cooperative cancellation."""


class CancelToken:
    """Flag shared by a job and everything it spawns. Checked, never raised."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self._cancelled})"
