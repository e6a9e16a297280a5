from .base import IdentityStore, participant_id_key, participant_name_key
from .file import JsonFileIdentityStore
from .memory import InMemoryIdentityStore

__all__ = [
    "IdentityStore",
    "InMemoryIdentityStore",
    "JsonFileIdentityStore",
    "participant_id_key",
    "participant_name_key",
]
