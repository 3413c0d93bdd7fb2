from __future__ import annotations


class CancellationToken:
    """Liveness flag for one asynchronous operation.

    Child tokens are cancelled together with their parent, so cancelling the
    owner's root token (teardown) invalidates every in-flight continuation.
    """

    __slots__ = ("_cancelled", "_parent", "reason")

    def __init__(self, parent: CancellationToken | None = None):
        self._cancelled = False
        self._parent = parent
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._parent is not None and self._parent.cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    def child(self) -> CancellationToken:
        return CancellationToken(self)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
