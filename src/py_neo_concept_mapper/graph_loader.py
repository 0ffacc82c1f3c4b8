# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from pathlib import Path
from typing import Iterable, List, Optional

from neo4j import Driver
from rich.console import Console

from .athena import AthenaParser
from .config import settings
from .models import Concept, ConceptAncestor, ConceptRelationship

console = Console()


def _batches(rows: List[dict], size: int) -> Iterable[List[dict]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


class VocabularyGraphLoader:
    """
    Loads an Athena vocabulary snapshot into Neo4j as the graph queried by
    `Neo4jVocabulary`. Writes are idempotent MERGEs in UNWIND batches.
    """

    def __init__(self, driver: Driver, version: str, database: Optional[str] = None):
        self.driver = driver
        self.version = version
        self.database = database or settings.neo4j_database

    def _run_query(self, query: str, params: dict = None):
        """Helper to run a write query."""
        self.driver.execute_query(query, parameters_=params, database_=self.database)

    def _run_batched(self, query: str, rows: List[dict]):
        for batch in _batches(rows, settings.batch_size):
            self._run_query(query, params={"rows": batch, "version": self.version})

    def ensure_constraints(self):
        """Creates unique constraints for Concept and Vocabulary_Meta nodes."""
        console.log("Ensuring database constraints exist...")
        self._run_query("CREATE CONSTRAINT IF NOT EXISTS FOR (c:Concept) REQUIRE c.concept_id IS UNIQUE")
        self._run_query("CREATE CONSTRAINT IF NOT EXISTS FOR (m:Vocabulary_Meta) REQUIRE m.id IS UNIQUE")
        console.log("[green]Constraints are in place.[/green]")

    def load_concepts(self, concepts: List[Concept]):
        console.log(f"Loading {len(concepts)} concepts...")
        rows = [c.model_dump() for c in concepts]
        self._run_batched(
            """
            UNWIND $rows AS row
            MERGE (c:Concept {concept_id: row.concept_id})
            SET c += row, c.last_seen_version = $version
            """,
            rows,
        )

    def load_relationships(self, relationships: List[ConceptRelationship]):
        console.log(f"Loading {len(relationships)} mapping relationships...")
        rows = [r.model_dump() for r in relationships]
        self._run_batched(
            """
            UNWIND $rows AS row
            MATCH (a:Concept {concept_id: row.concept_id_1})
            MATCH (b:Concept {concept_id: row.concept_id_2})
            MERGE (a)-[r:MAPS_TO {relationship_id: row.relationship_id}]->(b)
            SET r.last_seen_version = $version
            """,
            rows,
        )

    def load_ancestors(self, ancestors: List[ConceptAncestor]):
        console.log(f"Loading {len(ancestors)} ancestor pairs...")
        rows = [a.model_dump() for a in ancestors]
        self._run_batched(
            """
            UNWIND $rows AS row
            MATCH (a:Concept {concept_id: row.ancestor_concept_id})
            MATCH (d:Concept {concept_id: row.descendant_concept_id})
            MERGE (a)-[r:HAS_DESCENDANT]->(d)
            SET r.min_levels = row.min_levels_of_separation,
                r.max_levels = row.max_levels_of_separation,
                r.last_seen_version = $version
            """,
            rows,
        )

    def update_meta_node(self):
        """Updates the vocabulary metadata node to the loaded version."""
        console.log(f"Updating metadata version to {self.version}...")
        self._run_query(
            "MERGE (m:Vocabulary_Meta {id: 'singleton'}) SET m.version = $version",
            params={"version": self.version}
        )
        console.log("[green]Metadata version updated.[/green]")

    def run_import(self, vocab_dir: Path):
        """Parses the Athena files in `vocab_dir` and loads them into the graph."""
        console.log(f"Starting vocabulary import for version: [bold cyan]{self.version}[/bold cyan]")
        parser = AthenaParser(vocab_dir)
        concepts, relationships, ancestors = parser.parse_files()

        self.ensure_constraints()
        self.load_concepts(concepts)
        self.load_relationships(relationships)
        self.load_ancestors(ancestors)
        self.update_meta_node()
        console.log("[green]Finished loading the vocabulary graph.[/green]")
