from __future__ import annotations

from typing import Dict, Optional

from .base import IdentityStore


class InMemoryIdentityStore(IdentityStore):
    """Process-local identity storage; forgets everything on restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key) or None

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)
