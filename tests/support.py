from __future__ import annotations

import threading
import time

from cftp.instrumentation import Instrumentation


class RecordingInstrumentation(Instrumentation):
    def __init__(self):
        self._lock = threading.Lock()
        self.events = []

    def emit(self, hook, **attrs):
        with self._lock:
            self.events.append((hook, attrs))

    def hooks(self):
        with self._lock:
            return [h for h, _ in self.events]

    def find(self, hook):
        with self._lock:
            return [a for h, a in self.events if h == hook]


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
