"""In-process key-value medium for the local store."""
from typing import Dict, Optional

from fluentwork.stores.base import KeyValueMedium


class InMemoryKeyValueMedium(KeyValueMedium):
    """Dictionary-backed medium. Contents live as long as the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Value for {key} must be a string, got {type(value).__name__}")
        self._data[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._data
