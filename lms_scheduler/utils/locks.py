"""
Per-record mutual exclusion for in-process writers.

Each key gets its own lock so unrelated classes and sessions never wait on
each other. Entries are reference counted and dropped once no thread holds
or waits on them.
"""
import threading
from contextlib import contextmanager


class KeyedLock:
    def __init__(self, name):
        self.name = name
        self._guard = threading.Lock()
        self._locks = {}  # key -> [lock, users]

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def active_keys(self):
        with self._guard:
            return list(self._locks.keys())


# Update + billing reconciliation, keyed by class id
class_locks = KeyedLock('class')

# Join/leave on a live session, keyed by (class id, session date)
attendance_locks = KeyedLock('attendance')
