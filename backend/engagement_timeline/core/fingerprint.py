"""Change detection for polled record sets."""

import hashlib
import json
from typing import Any, Callable, Optional


def default_fingerprint(payload: Any) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


class MemoGuard:
    """Remembers the fingerprint of the last input whose result was applied.

    ``changed`` checks and remembers in one step. Callers that may discard a
    result after computing it use ``fingerprint`` / ``is_new`` first and
    ``remember`` only once the result is applied.
    """

    def __init__(self, fingerprint: Callable[[Any], str] = default_fingerprint):
        self._fingerprint = fingerprint
        self.last: Optional[str] = None

    def fingerprint(self, payload: Any) -> str:
        return self._fingerprint(payload)

    def is_new(self, fingerprint: str) -> bool:
        return fingerprint != self.last

    def remember(self, fingerprint: str) -> None:
        self.last = fingerprint

    def changed(self, payload: Any) -> bool:
        current = self.fingerprint(payload)
        if not self.is_new(current):
            return False
        self.remember(current)
        return True

    def reset(self) -> None:
        self.last = None
