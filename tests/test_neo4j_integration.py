# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
End-to-end check of the Neo4j vocabulary store: load the Athena test files
with VocabularyGraphLoader, then enrich and validate through Neo4jVocabulary.
"""
import pytest
from pathlib import Path

from py_neo_concept_mapper.enrichment import EnrichmentEngine
from py_neo_concept_mapper.graph_loader import VocabularyGraphLoader
from py_neo_concept_mapper.models import Mapping, ProposedMapping
from py_neo_concept_mapper.validation import IssueCode, ValidationEngine
from py_neo_concept_mapper.vocabulary import Neo4jVocabulary

from .conftest import SOURCE_CONCEPTS

pytestmark = pytest.mark.integration


@pytest.fixture
def loaded_driver(neo4j_driver, athena_dir: Path):
    VocabularyGraphLoader(neo4j_driver, "test-v1").run_import(athena_dir)
    return neo4j_driver


def test_meta_node_is_stamped(loaded_driver):
    with loaded_driver.session() as session:
        version = session.run("MATCH (m:Vocabulary_Meta) RETURN m.version AS version").single()["version"]
    assert version == "test-v1"


def test_neo4j_and_in_memory_enrichment_agree(loaded_driver, vocabulary):
    curated = [
        Mapping(source_group_id=1, target_concept_id=100, unit_concept_id=8483, recommended=True),
        Mapping(source_group_id=2, target_concept_id=400, recommended=True),
    ]
    from_graph = EnrichmentEngine(Neo4jVocabulary(loaded_driver)).enrich(curated)
    from_memory = EnrichmentEngine(vocabulary).enrich(curated)
    assert from_graph.mappings == from_memory.mappings


def test_reload_is_idempotent(loaded_driver, athena_dir: Path):
    VocabularyGraphLoader(loaded_driver, "test-v1").run_import(athena_dir)
    with loaded_driver.session() as session:
        rels = session.run("MATCH ()-[r:MAPS_TO]->() RETURN count(r) AS count").single()["count"]
    assert rels == 6


def test_validation_against_graph(loaded_driver):
    report = ValidationEngine(Neo4jVocabulary(loaded_driver)).validate(
        [
            ProposedMapping(code="HR-01", target_id=123, score=1.0),
            ProposedMapping(code="SPO2-01", target_id=124, score=1.0),
        ],
        SOURCE_CONCEPTS,
    )
    assert [e.code for e in report.errors] == [IssueCode.NON_STANDARD_TARGET]
