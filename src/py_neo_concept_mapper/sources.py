# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Source batch (alignment) access.

Alignments are registered in `concept_mapping/alignments.json`; each one's
source rows live in `concept_mapping/<file_id>.csv` with the columns
vocabulary_id, concept_code, concept_name and category.
"""
import csv
import json
from datetime import date
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from pydantic import TypeAdapter, ValidationError
from rich.console import Console

from .exceptions import BatchNotFoundError, MalformedBatchError
from .models import Alignment, SourceConcept

console = Console()

REGISTRY_FILE = "alignments.json"
SOURCE_COLUMNS = ["row_id", "vocabulary_id", "concept_code", "concept_name", "category"]

_alignment_list = TypeAdapter(List[Alignment])


def _source_concept(row: dict, index: int) -> SourceConcept:
    """Builds a source concept from a CSV row; row_id falls back to the 1-based row index."""
    return SourceConcept(
        row_id=int(row.get("row_id") or index),
        vocabulary_id=row.get("vocabulary_id") or "",
        concept_code=row.get("concept_code") or "",
        concept_name=row.get("concept_name") or "",
        category=row.get("category") or "",
    )


class AlignmentRepository:
    """Reads and registers alignments under an app folder's concept_mapping directory."""

    def __init__(self, mapping_dir: Path):
        self.mapping_dir = Path(mapping_dir)
        self.registry_path = self.mapping_dir / REGISTRY_FILE

    def list_alignments(self) -> List[Alignment]:
        if not self.registry_path.exists():
            return []
        try:
            return _alignment_list.validate_json(self.registry_path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise BatchNotFoundError(f"Alignment registry {self.registry_path} is unreadable: {e}") from e

    def get_alignment(self, alignment_id: int) -> Alignment:
        for alignment in self.list_alignments():
            if alignment.alignment_id == alignment_id:
                return alignment
        raise BatchNotFoundError(f"Alignment not found with ID: {alignment_id}")

    def source_path(self, alignment: Alignment) -> Path:
        return self.mapping_dir / f"{alignment.file_id}.csv"

    def get_source_concepts(self, alignment_id: int, category: Optional[str] = None) -> List[SourceConcept]:
        """
        Returns the rows of an alignment that are eligible for mapping.
        An empty or missing category means no filtering.
        """
        alignment = self.get_alignment(alignment_id)
        path = self.source_path(alignment)
        if not path.exists():
            raise BatchNotFoundError(f"Source file for alignment {alignment_id} not found at {path}")

        concepts = []
        with open(path, 'r', encoding='utf-8', newline='') as f:
            reader = csv.DictReader(f)
            try:
                for index, row in enumerate(reader, start=1):
                    concepts.append(_source_concept(row, index))
            except (ValueError, ValidationError) as e:
                raise MalformedBatchError(
                    f"Malformed source row in {path.name} at line {reader.line_num}: {e}"
                ) from e
        if category:
            concepts = [c for c in concepts if c.category == category]
        console.log(f"Loaded {len(concepts)} source concepts for alignment {alignment.name!r}.")
        return concepts

    def register_alignment(
        self,
        name: str,
        source_concepts: List[SourceConcept],
        description: str = "",
        original_filename: str = "",
    ) -> Alignment:
        """Adds an alignment to the registry and writes its source rows."""
        self.mapping_dir.mkdir(parents=True, exist_ok=True)
        existing = self.list_alignments()
        alignment = Alignment(
            alignment_id=max((a.alignment_id for a in existing), default=0) + 1,
            name=name,
            description=description,
            file_id=uuid4().hex,
            original_filename=original_filename,
            created_date=date.today().isoformat(),
        )
        with open(self.source_path(alignment), 'w', encoding='utf-8', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=SOURCE_COLUMNS)
            writer.writeheader()
            writer.writerows(c.model_dump() for c in source_concepts)

        registry = [a.model_dump() for a in existing + [alignment]]
        self.registry_path.write_text(json.dumps(registry, indent=2), encoding="utf-8")
        console.log(f"Registered alignment {alignment.alignment_id} ({name}) with {len(source_concepts)} source concepts.")
        return alignment
