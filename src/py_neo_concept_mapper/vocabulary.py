# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Read-only access to the vocabulary graph.

The engines only need three bulk queries: concept attributes, mapping-kind
edges and descendant closure pairs. `VocabularyAccessor` names that contract;
`InMemoryVocabulary` answers it from Athena rows held in dictionaries and
`Neo4jVocabulary` answers it from the graph built by `VocabularyGraphLoader`.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Protocol, Set

from neo4j import Driver
from neo4j.exceptions import AuthError, ServiceUnavailable, SessionExpired
from rich.console import Console

from .config import settings
from .exceptions import VocabularyUnavailableError
from .models import Concept, ConceptAncestor, ConceptRelationship

console = Console()

INVERSE_RELATIONSHIPS = {"Maps to": "Mapped from", "Mapped from": "Maps to"}


class VocabularyAccessor(Protocol):
    def fetch_concepts(self, concept_ids: Iterable[int]) -> Dict[int, Concept]:
        ...

    def fetch_mapping_edges(self, concept_ids: Iterable[int]) -> List[ConceptRelationship]:
        ...

    def fetch_descendants(self, concept_ids: Iterable[int]) -> List[ConceptAncestor]:
        ...


class InMemoryVocabulary:
    """
    Holds a vocabulary snapshot in memory.
    Mapping-kind edges are indexed from both ends, so the relation is undirected.
    """

    def __init__(
        self,
        concepts: Iterable[Concept],
        relationships: Iterable[ConceptRelationship] = (),
        ancestors: Iterable[ConceptAncestor] = (),
        mapping_relationships: Optional[List[str]] = None,
    ):
        kinds = set(mapping_relationships or settings.mapping_relationships)
        self._concepts: Dict[int, Concept] = {c.concept_id: c for c in concepts}
        self._edges: Dict[int, Set[tuple]] = defaultdict(set)
        for rel in relationships:
            if rel.relationship_id not in kinds:
                continue
            self._edges[rel.concept_id_1].add((rel.concept_id_2, rel.relationship_id))
            inverse = INVERSE_RELATIONSHIPS.get(rel.relationship_id, rel.relationship_id)
            self._edges[rel.concept_id_2].add((rel.concept_id_1, inverse))
        self._descendants: Dict[int, Dict[int, ConceptAncestor]] = defaultdict(dict)
        for row in ancestors:
            self._descendants[row.ancestor_concept_id][row.descendant_concept_id] = row

    def __len__(self) -> int:
        return len(self._concepts)

    def fetch_concepts(self, concept_ids: Iterable[int]) -> Dict[int, Concept]:
        return {cid: self._concepts[cid] for cid in set(concept_ids) if cid in self._concepts}

    def fetch_mapping_edges(self, concept_ids: Iterable[int]) -> List[ConceptRelationship]:
        edges = []
        for cid in sorted(set(concept_ids)):
            for other, rel_id in sorted(self._edges.get(cid, ())):
                edges.append(ConceptRelationship(concept_id_1=cid, concept_id_2=other, relationship_id=rel_id))
        return edges

    def fetch_descendants(self, concept_ids: Iterable[int]) -> List[ConceptAncestor]:
        rows = []
        for cid in sorted(set(concept_ids)):
            rows.extend(self._descendants.get(cid, {}).values())
        return rows


class Neo4jVocabulary:
    """
    Answers vocabulary queries from a Neo4j graph of
    (:Concept)-[:MAPS_TO]->(:Concept) and (:Concept)-[:HAS_DESCENDANT]->(:Concept).
    """

    def __init__(self, driver: Driver, database: Optional[str] = None):
        self.driver = driver
        self.database = database or settings.neo4j_database

    def _run_query(self, query: str, params: dict = None) -> list:
        """Helper to run a read query and return its records."""
        try:
            records, _, _ = self.driver.execute_query(query, parameters_=params, database_=self.database)
        except (ServiceUnavailable, SessionExpired, AuthError) as e:
            raise VocabularyUnavailableError(f"Vocabulary store at {settings.neo4j_uri} is unavailable: {e}") from e
        return records

    def fetch_concepts(self, concept_ids: Iterable[int]) -> Dict[int, Concept]:
        ids = sorted(set(concept_ids))
        if not ids:
            return {}
        records = self._run_query(
            """
            UNWIND $ids AS id
            MATCH (c:Concept {concept_id: id})
            RETURN c {.*} AS concept
            """,
            params={"ids": ids},
        )
        concepts = [Concept(**record["concept"]) for record in records]
        return {c.concept_id: c for c in concepts}

    def fetch_mapping_edges(self, concept_ids: Iterable[int]) -> List[ConceptRelationship]:
        ids = sorted(set(concept_ids))
        if not ids:
            return []
        # Undirected match: an edge stored either way round counts for both ends.
        records = self._run_query(
            """
            MATCH (a:Concept)-[r:MAPS_TO]-(b:Concept)
            WHERE a.concept_id IN $ids AND r.relationship_id IN $kinds
            RETURN DISTINCT a.concept_id AS concept_id_1, b.concept_id AS concept_id_2,
                   r.relationship_id AS relationship_id
            """,
            params={"ids": ids, "kinds": settings.mapping_relationships},
        )
        return [ConceptRelationship(**record.data()) for record in records]

    def fetch_descendants(self, concept_ids: Iterable[int]) -> List[ConceptAncestor]:
        ids = sorted(set(concept_ids))
        if not ids:
            return []
        records = self._run_query(
            """
            MATCH (a:Concept)-[r:HAS_DESCENDANT]->(d:Concept)
            WHERE a.concept_id IN $ids
            RETURN a.concept_id AS ancestor_concept_id, d.concept_id AS descendant_concept_id,
                   coalesce(r.min_levels, 0) AS min_levels_of_separation,
                   coalesce(r.max_levels, 0) AS max_levels_of_separation
            """,
            params={"ids": ids},
        )
        return [ConceptAncestor(**record.data()) for record in records]
