"""
State Store

Key/value storage shared by every contract hosted in the in-process chain.
Keys are ``(namespace, key)`` pairs; a namespace is usually an address plus
a slot name (``"0xToken.balances"``).

``atomic()`` opens a transaction: writes made inside it are journaled and
undone if the block raises. Transactions nest, so a reverted sub-call only
undoes its own writes. The store holds a re-entrant lock for the duration
of the outermost transaction so read-modify-write sequences are serialized.

Example::

    store = StateStore()
    with store.atomic():
        store.set("token.balances", alice, store.get("token.balances", alice, 0) - 10)
        store.set("token.balances", bob, store.get("token.balances", bob, 0) + 10)
"""

import threading
from contextlib import contextmanager
from typing import Any, Dict, Hashable, Iterator, List, Tuple

_MISSING = object()


class StateStore:
    """In-memory key/value store with nested, journaled transactions."""

    def __init__(self):
        self._data: Dict[Tuple[str, Hashable], Any] = {}
        self._journals: List[List[Tuple[Tuple[str, Hashable], Any]]] = []
        self._lock = threading.RLock()

    def get(self, namespace: str, key: Hashable, default: Any = None) -> Any:
        return self._data.get((namespace, key), default)

    def set(self, namespace: str, key: Hashable, value: Any) -> None:
        with self._lock:
            slot = (namespace, key)
            if self._journals:
                self._journals[-1].append((slot, self._data.get(slot, _MISSING)))
            self._data[slot] = value

    def delete(self, namespace: str, key: Hashable) -> None:
        with self._lock:
            slot = (namespace, key)
            if slot not in self._data:
                return
            if self._journals:
                self._journals[-1].append((slot, self._data[slot]))
            del self._data[slot]

    def items(self, namespace: str) -> Iterator[Tuple[Hashable, Any]]:
        for (ns, key), value in list(self._data.items()):
            if ns == namespace:
                yield key, value

    @property
    def in_transaction(self) -> bool:
        return bool(self._journals)

    @contextmanager
    def atomic(self):
        """Run the block as one transaction; undo its writes if it raises."""
        with self._lock:
            self._journals.append([])
            try:
                yield self
            except BaseException:
                journal = self._journals.pop()
                for slot, previous in reversed(journal):
                    if previous is _MISSING:
                        self._data.pop(slot, None)
                    else:
                        self._data[slot] = previous
                raise
            else:
                journal = self._journals.pop()
                if self._journals:
                    self._journals[-1].extend(journal)
