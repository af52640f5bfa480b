from __future__ import annotations

import copy
import json
import os
from typing import Any, Dict, Mapping, Optional, Tuple


CACHE_ENV = "REDCAP_CACHE"

CacheKey = Tuple[bool, Tuple[Tuple[str, str], ...]]


def cache_enabled_from_env(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Caching is on only when ``REDCAP_CACHE`` is exactly ``ON``."""
    environ = os.environ if environ is None else environ
    return environ.get(CACHE_ENV) == "ON"


class ResponseCache:
    """
    Memoizes interpreted responses by request payload.

    Entries never expire; mutating client calls are expected to
    :meth:`flush` before they hit the server.  Not safe for concurrent use.
    """

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, Tuple[Any, Optional[int]]] = {}

    @staticmethod
    def key_for(payload: Mapping[str, Any], raw: bool = False) -> CacheKey:
        items = tuple(
            sorted(
                (str(key), json.dumps(value, sort_keys=True, default=str))
                for key, value in payload.items()
            )
        )
        return (bool(raw), items)

    def get(self, key: CacheKey) -> Any:
        """Return a deep copy of the cached response."""
        return copy.deepcopy(self._entries[key][0])

    def status_code(self, key: CacheKey) -> Optional[int]:
        return self._entries[key][1]

    def set(self, key: CacheKey, response: Any, status_code: Optional[int] = None) -> None:
        self._entries[key] = (copy.deepcopy(response), status_code)

    def flush(self) -> int:
        dropped = len(self._entries)
        self._entries.clear()
        return dropped

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
