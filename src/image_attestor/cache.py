# Copyright 2025 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Bounded, least-recently-used cache of image signature selectors.

The cache is keyed by image ID and holds up to `size` images, regardless of
how many selectors each one has. Both reads and writes refresh an entry; a
write to a full cache evicts the entry that was used least recently.

`collections.OrderedDict` provides the hash index and the recency list in
one structure (the most recently used key is last), so lookups, refreshes
and evictions are all O(1). A single lock guards it.
"""

from __future__ import annotations

import collections
from collections.abc import Iterable
from dataclasses import dataclass
import threading

from image_attestor import selectors as selectors_lib


DEFAULT_CACHE_SIZE = 100


@dataclass(frozen=True)
class Item:
    """A cached image.

    Attributes:
        key: The image ID.
        value: The selectors retained for the image, possibly none.
        policy_generation: Generation of the policy the selectors were
          filtered with.
    """

    key: str
    value: tuple[selectors_lib.SignatureSelector, ...] = ()
    policy_generation: int = 0

    @classmethod
    def create(
        cls,
        key: str,
        value: Iterable[selectors_lib.SignatureSelector],
        policy_generation: int = 0,
    ) -> Item:
        return cls(key, tuple(value), policy_generation)


class SignatureCache:
    """Thread-safe LRU cache of `Item`s."""

    def __init__(self, size: int = DEFAULT_CACHE_SIZE):
        if size < 1:
            raise ValueError(f"Cache size must be positive, got {size}")
        self._size = size
        self._lock = threading.Lock()
        self._items: collections.OrderedDict[str, Item] = (
            collections.OrderedDict()
        )

    @property
    def size(self) -> int:
        return self._size

    def get_signature(self, key: str) -> Item | None:
        """Returns the item for `key` and marks it most recently used.

        Returns None, never an empty item, when `key` is not cached.
        """
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            self._items.move_to_end(key)
            return item

    def put_signature(self, item: Item) -> None:
        """Stores an item, replacing any item cached under the same key.

        The stored item becomes the most recently used. If the cache is full
        and the key is new, the least recently used item is evicted first.
        """
        with self._lock:
            if item.key in self._items:
                self._items.move_to_end(item.key)
            elif len(self._items) >= self._size:
                self._items.popitem(last=False)
            self._items[item.key] = item

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def keys(self) -> list[str]:
        """Returns the cached keys, least recently used first."""
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items
