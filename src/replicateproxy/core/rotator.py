"""Round-robin rotation over upstream API credentials."""
import threading
from typing import Callable, Generic, List, Sequence, TypeVar

ClientT = TypeVar("ClientT")


def mask_credential(raw_key: str) -> str:
    tail = raw_key[-4:] if raw_key else "xxxx"
    return f"***{tail}"


class CredentialRotator(Generic[ClientT]):
    """Hands out one client per credential in a fixed cyclic order.

    Clients are built once, up front. ``next()`` reads the cursor and advances
    it under a lock, so two overlapping requests never observe the same index
    for the same step.
    """

    def __init__(self, credentials: Sequence[str], client_factory: Callable[[str], ClientT]):
        if not credentials:
            raise ValueError("At least one upstream API key is required")
        self._credentials: List[str] = list(credentials)
        self._clients: List[ClientT] = [client_factory(key) for key in self._credentials]
        self._lock = threading.Lock()
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._clients)

    @property
    def pool_size(self) -> int:
        return len(self._clients)

    @property
    def cursor(self) -> int:
        return self._cursor

    def next_index(self) -> int:
        """Return the current pool index and advance the cursor."""
        with self._lock:
            index = self._cursor
            self._cursor = (index + 1) % len(self._clients)
        return index

    def client(self, index: int) -> ClientT:
        return self._clients[index]

    def next(self) -> ClientT:
        """Return the client for the next credential, wrapping around."""
        return self._clients[self.next_index()]

    def label(self, index: int) -> str:
        return mask_credential(self._credentials[index])
