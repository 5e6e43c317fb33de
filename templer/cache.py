"""Expiring key/value cache groups shared with user scripts.

The cache is a mapping of group name to entries. Each entry is a mapping with
``data`` and an optional ``expires`` UNIX timestamp (seconds). The whole
structure is loaded once when the store is constructed and written once when
the process shuts down.

Example
-------
>>> from pathlib import Path
>>> from templer.cache import CacheStore
>>> store = CacheStore(Path("templer/cache"))  # doctest: +SKIP
>>> store.group("shared")["feed"] = {"data": [], "expires": 0}  # doctest: +SKIP
>>> store.expire()  # doctest: +SKIP
>>> store.store()  # doctest: +SKIP
"""

from __future__ import annotations

import numbers
import time
import typing as typ
from pathlib import Path

import msgspec.json

from templer._constants import CACHE_FILENAME, SHARED_CACHE_GROUP
from templer.config import CachePolicy, ConfigError
from templer.logging import get_logger

CacheGroup = dict[str, typ.Any]

logger = get_logger("cache")


class CacheExpiryError(ConfigError):
    """Raised when a cache entry carries an expiry that is not a number."""


class CacheStore:
    """Own every cache group and its persistence."""

    def __init__(
        self, cache_dir: Path, *, policy: CachePolicy = CachePolicy.SHARED
    ) -> None:
        """Load ``cache.json`` from ``cache_dir`` when it exists.

        Parameters
        ----------
        cache_dir : Path
            Directory holding the persisted cache file.
        policy : CachePolicy, optional
            ``SHARED`` puts every script in one group; ``PER_SCRIPT`` isolates
            each generate script owner (and the hooks) in its own group.
        """
        self.cache_dir = cache_dir
        self.policy = policy
        self.groups: dict[str, CacheGroup] = {}
        self.load()

    @property
    def path(self) -> Path:
        return self.cache_dir.resolve() / CACHE_FILENAME

    def load(self) -> None:
        """Replace in-memory groups with the persisted file, if any."""
        if not self.path.exists():
            return
        raw = self.path.read_bytes()
        if raw.strip():
            self.groups = msgspec.json.decode(raw, type=dict[str, CacheGroup])

    def store(self) -> None:
        """Persist every group; call before exiting."""
        if not self.cache_dir.exists():
            logger.info("Making cache dir: %s", self.cache_dir.resolve())
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Writing cache: %s", self.path)
        self.path.write_bytes(msgspec.json.encode(self.groups))

    def clear(self) -> None:
        self.groups.clear()

    def group_name(self, owner: str) -> str:
        """Return the group used by the script owned by ``owner``."""
        if self.policy is CachePolicy.SHARED:
            return SHARED_CACHE_GROUP
        return f"_{owner}"

    def group(self, name: str) -> CacheGroup:
        """Return the mutable group ``name``, creating it when missing."""
        return self.groups.setdefault(name, {})

    def replace(self, name: str, entries: typ.Mapping[str, typ.Any]) -> None:
        """Swap the contents of group ``name`` for ``entries``.

        The existing dict object is updated in place so scripts still holding
        a reference observe the new contents.
        """
        group = self.group(name)
        if group is entries:
            return
        group.clear()
        group.update(entries)

    def remove_page(self, page: str) -> None:
        """Drop the group owned by ``page``; the shared group is left intact."""
        if self.policy is CachePolicy.PER_SCRIPT:
            self.groups.pop(self.group_name(page), None)

    def expire(self, now: float | None = None) -> None:
        """Delete entries whose ``expires`` timestamp is in the past.

        Raises
        ------
        CacheExpiryError
            If an entry's ``expires`` value is present but not numeric.
        """
        current = time.time() if now is None else now
        for group_name, group in self.groups.items():
            for item_name in list(group):
                item = group[item_name]
                expires = item.get("expires") if isinstance(item, dict) else None
                if expires is None:
                    continue
                if isinstance(expires, bool) or not isinstance(expires, numbers.Real):
                    msg = (
                        f"{group_name} cache item {item_name} expires date is "
                        f"invalid: {expires!r}"
                    )
                    raise CacheExpiryError(msg)
                if current > expires:
                    logger.info("Expired %s cache item: %s", group_name, item_name)
                    del group[item_name]


__all__ = ["CacheExpiryError", "CacheGroup", "CacheStore"]
