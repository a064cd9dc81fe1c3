"""
Write-once cell holding the proxy server's resolved port.
"""

from __future__ import annotations

from ..exceptions import PortNotReadyError, QueryCacheError

UNSET_PORT = 0


class PortState:
    """
    Two-state handshake between the startup path and the build-transform hook.

    The cell starts pending (port 0). `resolve` moves it to resolved exactly
    once; `require` is the only read the build-transform hook should use.
    """

    def __init__(self) -> None:
        self._port = UNSET_PORT

    @property
    def current(self) -> int:
        return self._port

    @property
    def is_resolved(self) -> bool:
        return self._port != UNSET_PORT

    def resolve(self, port: int) -> None:
        if port <= UNSET_PORT:
            raise QueryCacheError(f"Cannot resolve port state to {port}")
        if self.is_resolved and port != self._port:
            raise QueryCacheError(
                f"Port state already resolved to {self._port}, refusing {port}"
            )
        self._port = port

    def require(self) -> int:
        if not self.is_resolved:
            raise PortNotReadyError(
                "Could not get port in time: the rewrites hook must complete "
                "before the webpack hook runs"
            )
        return self._port

    def __repr__(self) -> str:
        state = "resolved" if self.is_resolved else "pending"
        return f"PortState({state}, port={self._port})"
