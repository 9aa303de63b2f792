"""Persistence-store debug helper.

Test and debugging code often needs to point an application at a
throwaway store, wipe it, and save it, while reporting what happened in
the same indented stream as everything else. ``StoreDebugHelper`` does
that on top of any ``RecordStore``; ``AsdfRecordStore`` is the bundled
store, keeping named lists of records in ASDF files.

Store failures are reported through the tracker as errors. They are not
retried and never propagate out of the helper.

Example:
    store = AsdfRecordStore([Path("data/app.asdf")])
    helper = StoreDebugHelper(store, tracker)

    helper.set_store(tmp_path / "test.asdf")
    helper.reset_store()
    helper.save()
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import asdf

from scopelog.emitter import Severity
from scopelog.observability import get_logger
from scopelog.tracker import ScopeTracker

logger = get_logger(__name__)

#: Failures a store may raise that the helper reports instead of raising.
STORE_ERRORS: tuple[type[Exception], ...] = (OSError, ValueError, KeyError)

Record = dict[str, Any]


@runtime_checkable
class RecordStore(Protocol):
    """Minimal interface of a persistence store the helper can drive."""

    def stores(self) -> list[Path]:
        """Paths of the currently attached backing files."""
        ...

    def attach(self, path: Path) -> None:
        """Attach a backing file, loading its records if it exists."""
        ...

    def detach(self, path: Path) -> None:
        """Detach a backing file without saving it."""
        ...

    def entities(self) -> list[str]:
        """Names of every entity with records in any attached store."""
        ...

    def count(self, entity: str) -> int:
        """Number of records of ``entity`` across attached stores."""
        ...

    def delete_all(self, entity: str) -> int:
        """Delete every record of ``entity``; return how many went."""
        ...

    def save(self) -> None:
        """Write every attached store to its backing file."""
        ...


class AsdfRecordStore:
    """Record store backed by one or more ASDF files.

    Each file holds a tree ``{"entities": {name: [record, ...]}}`` where
    records are plain dictionaries. Records live in memory between
    ``attach`` and ``save``.
    """

    def __init__(self, paths: Iterable[Path | str] = ()) -> None:
        """Attach every path in ``paths`` in order.

        Raises:
            OSError: If an existing file cannot be read.
            ValueError: If an existing file is not valid ASDF.
        """
        self._stores: dict[Path, dict[str, list[Record]]] = {}
        for path in paths:
            self.attach(Path(path))

    def stores(self) -> list[Path]:
        return list(self._stores)

    def attach(self, path: Path) -> None:
        path = Path(path)
        entities: dict[str, list[Record]] = {}
        if path.exists():
            with asdf.open(path) as af:
                tree = af.tree.get("entities", {})
                entities = {
                    str(name): [dict(record) for record in records]
                    for name, records in tree.items()
                }
        self._stores[path] = entities
        logger.debug("Store attached", path=str(path), entities=len(entities))

    def detach(self, path: Path) -> None:
        del self._stores[Path(path)]

    def add(self, entity: str, record: Record, path: Path | None = None) -> None:
        """Add one record to ``path`` (the first attached store by default).

        Raises:
            KeyError: If no store is attached, or ``path`` is not attached.
        """
        if path is None:
            if not self._stores:
                raise KeyError("no store attached")
            path = next(iter(self._stores))
        self._stores[Path(path)].setdefault(entity, []).append(dict(record))

    def records(self, entity: str) -> list[Record]:
        """Copies of every record of ``entity`` across attached stores."""
        return [
            dict(record)
            for entities in self._stores.values()
            for record in entities.get(entity, [])
        ]

    def entities(self) -> list[str]:
        names: dict[str, None] = {}
        for entities in self._stores.values():
            names.update(dict.fromkeys(entities))
        return list(names)

    def count(self, entity: str) -> int:
        return sum(len(e.get(entity, [])) for e in self._stores.values())

    def delete_all(self, entity: str) -> int:
        deleted = 0
        for entities in self._stores.values():
            deleted += len(entities.pop(entity, []))
        return deleted

    def save(self) -> None:
        for path, entities in self._stores.items():
            path.parent.mkdir(parents=True, exist_ok=True)
            af = asdf.AsdfFile({"entities": entities})
            af.write_to(path)
            logger.debug("Store written", path=str(path))


class StoreDebugHelper:
    """Drives a ``RecordStore`` and reports every step through a tracker."""

    def __init__(self, store: RecordStore, tracker: ScopeTracker) -> None:
        self.store = store
        self.tracker = tracker

    def print_stores(self) -> None:
        """Write one line per attached store."""
        for path in self.store.stores():
            self.tracker.info("Attached store:", str(path), severity=Severity.NONE)

    def set_store(self, path: Path | str) -> bool:
        """Save pending changes, then swap every attached store for ``path``.

        Returns:
            True on success, False if a failure was reported.
        """
        path = Path(path)
        try:
            self.store.save()
            for old in self.store.stores():
                self.store.detach(old)
                self.tracker.info("Detached store", str(old))
            self.store.attach(path)
            self.tracker.info("Attached store changed", str(path))
        except STORE_ERRORS as exc:
            self.tracker.error("Exception occurred", repr(exc))
            return False

        self.print_stores()
        return True

    def reset_store(self) -> int:
        """Delete every record of every entity.

        A failing entity is reported and skipped; the rest still go.

        Returns:
            Total number of records deleted.
        """
        total = 0
        for entity in self.store.entities():
            try:
                deleted = self.store.delete_all(entity)
            except STORE_ERRORS as exc:
                self.tracker.error("Exception occurred", repr(exc), "deleting", entity)
                continue
            total += deleted
            self.tracker.info(f"{deleted} records for {entity} deleted")
        return total

    def save(self) -> bool:
        """Save the store.

        Returns:
            True on success, False if a failure was reported.
        """
        try:
            self.store.save()
        except STORE_ERRORS as exc:
            self.tracker.error("Exception occurred", repr(exc))
            return False

        self.tracker.info("Store successfully saved")
        return True
