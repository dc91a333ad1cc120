import threading
from contextlib import contextmanager


class KeyedLock:
    """One mutex per key, created on demand and dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries = {}  # key -> [lock, users]

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.Lock(), 0]
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]

    def __len__(self):
        with self._guard:
            return len(self._entries)
