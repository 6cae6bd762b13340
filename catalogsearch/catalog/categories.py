"""Category tree resolution.

A category filter always means "this category and everything below it", so a
handle or id has to be expanded into the full set of descendant ids before it
can be turned into a filter clause.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Hashable

from ..errors import CategoryLookupError
from ..model import Category
from ..protocol import CategoryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _CacheEntry:
    value: tuple[Category, ...]
    expires_at: float


class CategoryCache:
    """Read-through cache for category store lookups.

    Entries expire after ``ttl`` seconds and can be dropped at any time with
    ``invalidate()``. A missing or stale entry only costs a store read.
    """

    def __init__(self, ttl: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, _CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get_or_load(
        self, key: Hashable, loader: Callable[[], list[Category]]
    ) -> list[Category]:
        if self.ttl <= 0:
            return list(loader())

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at > self._clock():
                self.hits += 1
                return list(entry.value)
            self.misses += 1

        # Loaded outside the lock; a failed load caches nothing.
        value = tuple(loader())
        with self._lock:
            self._entries[key] = _CacheEntry(value, self._clock() + self.ttl)
        return list(value)

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one entry, or everything when no key is given."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass
class ResolvedCategories:
    """A category and all of its descendants."""

    root_id: str | None = None
    ids: set[str] = field(default_factory=set)
    records: dict[str, Category] = field(default_factory=dict)
    truncated: bool = False

    @property
    def names(self) -> list[str]:
        """Names of the resolved categories whose records are known."""
        return sorted(
            {self.records[i].name for i in self.ids if i in self.records}
        )

    def __bool__(self) -> bool:
        return bool(self.ids)


class CategoryTreeResolver:
    """Expands a category handle or id into itself plus all descendant ids."""

    def __init__(
        self,
        store: CategoryStore,
        cache: CategoryCache | None = None,
        max_depth: int = 16,
        workers: int = 1,
    ):
        self.store = store
        self.cache = cache or CategoryCache(ttl=0)
        self.max_depth = max_depth
        self.workers = workers

    def resolve_category_ids(
        self,
        handle_or_id: str | None = None,
        *,
        category_id: str | None = None,
        handle: str | None = None,
    ) -> set[str]:
        return self.resolve(handle_or_id, category_id=category_id, handle=handle).ids

    def resolve(
        self,
        handle_or_id: str | None = None,
        *,
        category_id: str | None = None,
        handle: str | None = None,
    ) -> ResolvedCategories:
        """Resolve a category reference into its closure.

        An explicit ``category_id`` wins over ``handle``. A bare
        ``handle_or_id`` is looked up as a handle first and used as a raw id
        when no category carries that handle. An unknown handle resolves to
        an empty result rather than an error.

        Raises CategoryLookupError when the store cannot be read.
        """
        memo: dict[str, list[Category]] = {}
        records: dict[str, Category] = {}

        if category_id:
            root_id = category_id
        elif handle or handle_or_id:
            root = self._find_by_handle(handle or handle_or_id)
            if root is not None:
                root_id = root.id
                records[root.id] = root
            elif handle_or_id and not handle:
                root_id = handle_or_id
            else:
                logger.info(f"No category with handle '{handle}'")
                return ResolvedCategories()
        else:
            return ResolvedCategories()

        if root_id not in records:
            root = self._find_by_id(root_id)
            if root is not None:
                records[root.id] = root

        ids = {root_id}
        frontier = [root_id]
        depth = 0
        truncated = False

        while frontier:
            children = self._fetch_children(frontier, memo)
            next_frontier = []
            for parent_id in frontier:
                for child in children.get(parent_id, []):
                    records.setdefault(child.id, child)
                    if child.id in ids or child.id in next_frontier:
                        logger.debug(f"Category '{child.id}' already visited")
                        continue
                    next_frontier.append(child.id)

            if next_frontier and depth >= self.max_depth:
                logger.warning(
                    f"Category tree below '{root_id}' is deeper than "
                    f"{self.max_depth} levels; ignoring the rest"
                )
                truncated = True
                break

            ids.update(next_frontier)
            frontier = next_frontier
            depth += 1

        logger.debug(f"Resolved category '{root_id}' to {len(ids)} ids")
        return ResolvedCategories(
            root_id=root_id, ids=ids, records=records, truncated=truncated
        )

    def all_categories(self) -> list[Category]:
        """Every category in the store."""
        return self.cache.get_or_load(
            ("all",), lambda: self._read(lambda: self.store.list_categories())
        )

    def _find_by_handle(self, handle: str) -> Category | None:
        matches = self.cache.get_or_load(
            ("handle", handle),
            lambda: self._read(lambda: self.store.list_categories(handle=handle)),
        )
        matches = [c for c in matches if c.handle == handle]
        if len(matches) > 1:
            logger.warning(
                f"Handle '{handle}' matches {len(matches)} categories; "
                f"using '{matches[0].id}'"
            )
        return matches[0] if matches else None

    def _find_by_id(self, category_id: str) -> Category | None:
        # The category stores have no by-id lookup.
        for category in self.all_categories():
            if category.id == category_id:
                return category
        return None

    def _fetch_children(
        self, parent_ids: list[str], memo: dict[str, list[Category]]
    ) -> dict[str, list[Category]]:
        """Fetch the direct children of every parent in one tree level."""
        missing = [pid for pid in parent_ids if pid not in memo]

        if self.workers > 1 and len(missing) > 1:
            with ThreadPoolExecutor(
                max_workers=min(self.workers, len(missing))
            ) as executor:
                results = list(executor.map(self._children_of, missing))
        else:
            results = [self._children_of(pid) for pid in missing]

        # Only the calling thread touches the memo and the visited set.
        for pid, children in zip(missing, results):
            memo[pid] = children

        return {pid: memo[pid] for pid in parent_ids}

    def _children_of(self, parent_id: str) -> list[Category]:
        return self.cache.get_or_load(
            ("children", parent_id),
            lambda: self._read(
                lambda: self.store.list_categories(parent_id=parent_id)
            ),
        )

    def _read(self, call: Callable[[], list[Category]]) -> list[Category]:
        try:
            return call()
        except CategoryLookupError:
            raise
        except Exception as e:
            raise CategoryLookupError(f"Category store read failed: {e}") from e
