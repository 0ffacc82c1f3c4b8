# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Persistent mapping set with all-or-nothing batch writes.

The store is a CSV file. Changes are staged on a `MappingUnitOfWork` and only
reach the file on commit, which writes a temporary file next to the store and
renames it into place. A failure before commit leaves the file untouched.
"""
import csv
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from rich.console import Console

from .exceptions import DuplicateMappingError, UnitOfWorkError
from .models import Mapping, MappingKey, MappingOrigin

console = Console()

MAPPING_COLUMNS = ["general_concept_id", "omop_concept_id", "omop_unit_concept_id", "recommended", "origin"]
TRUE_VALUES = {"true", "t", "1", "yes", "y"}


def _parse_optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() in ("", "NA"):
        return None
    return int(float(value))


def mapping_from_row(row: dict) -> Mapping:
    return Mapping(
        source_group_id=int(row["general_concept_id"]),
        target_concept_id=int(row["omop_concept_id"]),
        unit_concept_id=_parse_optional_int(row.get("omop_unit_concept_id")),
        recommended=(row.get("recommended") or "").strip().lower() in TRUE_VALUES,
        origin=MappingOrigin(row.get("origin") or MappingOrigin.CURATED.value),
    )


def mapping_to_row(mapping: Mapping) -> list:
    return [
        mapping.source_group_id,
        mapping.target_concept_id,
        "" if mapping.unit_concept_id is None else mapping.unit_concept_id,
        "TRUE" if mapping.recommended else "FALSE",
        mapping.origin.value,
    ]


class MappingStore:
    """CSV-backed mapping store. One row per composite key."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> List[Mapping]:
        if not self.path.exists():
            return []
        with open(self.path, 'r', encoding='utf-8', newline='') as f:
            return [mapping_from_row(row) for row in csv.DictReader(f)]

    def _write(self, mappings: Iterable[Mapping]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8', newline='') as f:
                writer = csv.writer(f)
                writer.writerow(MAPPING_COLUMNS)
                writer.writerows(mapping_to_row(m) for m in mappings)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @contextmanager
    def unit_of_work(self) -> Iterator["MappingUnitOfWork"]:
        """
        Yields a unit of work over the current contents of the store.
        It commits when the block exits normally and rolls back if the block raises.
        """
        uow = MappingUnitOfWork(self)
        try:
            yield uow
        except BaseException:
            if uow.is_open:
                uow.rollback()
            raise
        if uow.is_open:
            uow.commit()


class MappingUnitOfWork:
    """Stages additions and removals against a snapshot of a `MappingStore`."""

    def __init__(self, store: MappingStore):
        self.store = store
        self._mappings: Dict[MappingKey, Mapping] = {}
        for mapping in store.load():
            if mapping.key in self._mappings:
                raise DuplicateMappingError(mapping.key)
            self._mappings[mapping.key] = mapping
        self._pending = 0
        self.is_open = True

    def _check_open(self):
        if not self.is_open:
            raise UnitOfWorkError("This unit of work has already been committed or rolled back.")

    def __contains__(self, key: MappingKey) -> bool:
        return key in self._mappings

    def __len__(self) -> int:
        return len(self._mappings)

    @property
    def mappings(self) -> List[Mapping]:
        return list(self._mappings.values())

    def add(self, mapping: Mapping):
        self._check_open()
        if mapping.key in self._mappings:
            raise DuplicateMappingError(mapping.key)
        self._mappings[mapping.key] = mapping
        self._pending += 1

    def add_all(self, mappings: Iterable[Mapping]):
        for mapping in mappings:
            self.add(mapping)

    def remove(self, key: MappingKey):
        self._check_open()
        if key not in self._mappings:
            raise KeyError(f"Mapping {tuple(key)} is not in the mapping store.")
        del self._mappings[key]
        self._pending += 1

    def replace_all(self, mappings: Iterable[Mapping]):
        """Stages a full replacement of the mapping set, e.g. an enrichment result."""
        self._check_open()
        staged: Dict[MappingKey, Mapping] = {}
        for mapping in mappings:
            if mapping.key in staged:
                raise DuplicateMappingError(mapping.key)
            staged[mapping.key] = mapping
        self._mappings = staged
        self._pending += 1

    def commit(self):
        self._check_open()
        self.store._write(self._mappings.values())
        self.is_open = False
        console.log(f"[green]Committed {len(self._mappings)} mappings to {self.store.path.name}.[/green]")

    def rollback(self):
        self._check_open()
        self._mappings = {}
        self.is_open = False
        if self._pending:
            console.log(f"[yellow]Rolled back {self._pending} staged changes; {self.store.path.name} is unchanged.[/yellow]")
