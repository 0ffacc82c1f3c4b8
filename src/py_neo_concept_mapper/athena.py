# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import csv
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from rich.console import Console

from .config import settings
from .models import Concept, ConceptAncestor, ConceptRelationship
from .vocabulary import InMemoryVocabulary

console = Console()

CONCEPT_FILE = "CONCEPT.csv"
CONCEPT_RELATIONSHIP_FILE = "CONCEPT_RELATIONSHIP.csv"
CONCEPT_ANCESTOR_FILE = "CONCEPT_ANCESTOR.csv"


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class AthenaParser:
    """Parses an OHDSI Athena vocabulary download (tab-delimited CSV files) into Pydantic models."""

    def __init__(self, vocab_dir: Path):
        self.vocab_dir = Path(vocab_dir)
        self.concept_path = self.vocab_dir / CONCEPT_FILE
        self.relationship_path = self.vocab_dir / CONCEPT_RELATIONSHIP_FILE
        self.ancestor_path = self.vocab_dir / CONCEPT_ANCESTOR_FILE

    def _read_rows(self, path: Path) -> Iterator[dict]:
        # Athena files are unquoted.
        with open(path, 'r', encoding='utf-8', newline='') as f:
            reader = csv.DictReader(f, delimiter='\t', quotechar='\x00')
            yield from reader

    def parse_concepts(self) -> List[Concept]:
        console.log(f"Parsing {self.concept_path.name}...")
        concepts = []
        skipped = 0
        for row in self._read_rows(self.concept_path):
            try:
                concepts.append(Concept(
                    concept_id=int(row["concept_id"]),
                    concept_name=row["concept_name"],
                    vocabulary_id=row["vocabulary_id"],
                    domain_id=row["domain_id"],
                    concept_class_id=row["concept_class_id"],
                    standard_concept=_blank_to_none(row.get("standard_concept")),
                    invalid_reason=_blank_to_none(row.get("invalid_reason")),
                    concept_code=row.get("concept_code") or "",
                ))
            except (KeyError, TypeError, ValueError):
                skipped += 1
        if skipped:
            console.log(f"[yellow]Skipped {skipped} malformed rows in {self.concept_path.name}.[/yellow]")
        console.log(f"Parsed {len(concepts)} concepts.")
        return concepts

    def parse_relationships(self) -> List[ConceptRelationship]:
        """Keeps only valid mapping-kind relationships."""
        console.log(f"Parsing {self.relationship_path.name}...")
        kinds = set(settings.mapping_relationships)
        relationships = []
        skipped = 0
        for row in self._read_rows(self.relationship_path):
            try:
                if row["relationship_id"] not in kinds or _blank_to_none(row.get("invalid_reason")):
                    continue
                relationships.append(ConceptRelationship(
                    concept_id_1=int(row["concept_id_1"]),
                    concept_id_2=int(row["concept_id_2"]),
                    relationship_id=row["relationship_id"],
                ))
            except (KeyError, TypeError, ValueError):
                skipped += 1
        if skipped:
            console.log(f"[yellow]Skipped {skipped} malformed rows in {self.relationship_path.name}.[/yellow]")
        console.log(f"Parsed {len(relationships)} mapping relationships.")
        return relationships

    def parse_ancestors(self) -> List[ConceptAncestor]:
        console.log(f"Parsing {self.ancestor_path.name}...")
        ancestors = []
        skipped = 0
        for row in self._read_rows(self.ancestor_path):
            try:
                ancestors.append(ConceptAncestor(
                    ancestor_concept_id=int(row["ancestor_concept_id"]),
                    descendant_concept_id=int(row["descendant_concept_id"]),
                    min_levels_of_separation=int(row.get("min_levels_of_separation") or 0),
                    max_levels_of_separation=int(row.get("max_levels_of_separation") or 0),
                ))
            except (KeyError, TypeError, ValueError):
                skipped += 1
        if skipped:
            console.log(f"[yellow]Skipped {skipped} malformed rows in {self.ancestor_path.name}.[/yellow]")
        console.log(f"Parsed {len(ancestors)} ancestor pairs.")
        return ancestors

    def parse_files(self) -> Tuple[List[Concept], List[ConceptRelationship], List[ConceptAncestor]]:
        missing = [p.name for p in (self.concept_path, self.relationship_path, self.ancestor_path) if not p.exists()]
        if missing:
            raise FileNotFoundError(f"Athena vocabulary files missing from {self.vocab_dir}: {', '.join(missing)}")
        return self.parse_concepts(), self.parse_relationships(), self.parse_ancestors()

    def load_vocabulary(self) -> InMemoryVocabulary:
        concepts, relationships, ancestors = self.parse_files()
        return InMemoryVocabulary(concepts, relationships, ancestors)
