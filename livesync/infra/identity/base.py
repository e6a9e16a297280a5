"""Local durable identity storage (remembers a participant across reloads)."""

from __future__ import annotations

import abc
from typing import Optional


def participant_id_key(session_code: str) -> str:
    return f"participant_id_{session_code}"


def participant_name_key(session_code: str) -> str:
    return f"participant_name_{session_code}"


class IdentityStore(abc.ABC):
    """Key/value storage scoped by session code."""

    @abc.abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when absent or empty."""
        ...

    @abc.abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abc.abstractmethod
    def delete(self, key: str) -> None: ...
