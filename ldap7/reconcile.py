"""
Best-effort reconciliation of a desired list against the directory.

Every desired item is upserted, then existing entries whose key is not
desired are deleted. A failure on one item is logged and the batch goes on.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Hashable, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class SyncResult:
    """Outcome of one reconciliation pass."""

    kind: str
    upserted: List[Hashable] = field(default_factory=list)
    deleted: List[Hashable] = field(default_factory=list)
    failed: List[Hashable] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return (f"{self.kind}: {len(self.upserted)} upserted, {len(self.deleted)} deleted, "
                f"{len(self.failed)} failed")


def reconcile(kind: str,
              desired: Iterable[T],
              key: Callable[[T], Hashable],
              upsert: Callable[[T], None],
              list_existing: Callable[[], Iterable[Hashable]],
              delete: Callable[[Hashable], None],
              match: Optional[Callable[[Hashable], Hashable]] = None) -> SyncResult:
    """
    Make the directory hold exactly the desired items of one kind.

    Args:
        kind: Entity name used in log messages
        desired: Items that should exist
        key: Returns the identifying key of an item
        upsert: Creates or updates one item
        list_existing: Returns the keys of entries currently in scope; errors
            raised here propagate
        delete: Removes the entry with the given key
        match: Folds a key before desired and existing keys are compared,
            e.g. to lower case for attributes the directory matches
            case-insensitively

    Returns:
        SyncResult listing upserted, deleted and failed keys
    """
    match = match or (lambda item_key: item_key)
    result = SyncResult(kind)
    wanted = set()

    logger.info(f"Syncing {kind}s")

    for item in desired:
        item_key = key(item)
        # a failed upsert still protects the existing entry from deletion
        wanted.add(match(item_key))
        try:
            upsert(item)
            result.upserted.append(item_key)
        except Exception as e:
            result.failed.append(item_key)
            logger.error(f"Error syncing {kind} {item_key}: {e}")

    orphans = [existing for existing in list_existing() if match(existing) not in wanted]

    for orphan in orphans:
        logger.info(f"Removing orphan {kind} {orphan}")
        try:
            delete(orphan)
            result.deleted.append(orphan)
        except Exception as e:
            result.failed.append(orphan)
            logger.error(f"Error removing orphan {kind} {orphan}: {e}")

    logger.info(f"{len(wanted)} {kind}s synced ({result.summary()})")
    return result
