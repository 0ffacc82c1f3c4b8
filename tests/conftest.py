# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import csv
import json
import pytest
from pathlib import Path

from py_neo_concept_mapper.config import settings
from py_neo_concept_mapper.models import Concept, ConceptAncestor, ConceptRelationship, SourceConcept
from py_neo_concept_mapper.sources import AlignmentRepository
from py_neo_concept_mapper.vocabulary import InMemoryVocabulary

# --- Test Vocabulary ---
# LOINC 100 (Heart rate) has LOINC descendants 101 (valid) and 102 (deprecated).
# It maps to SNOMED 200 (with descendant 201), to a SNOMED drug concept that is
# not a Clinical Drug (202) and to RxNorm 700. LOINC 101 maps to ICD10 300.
# RxNorm 400 (Ingredient) has descendants 401 (Clinical Drug), 402 (Branded
# Drug) and 403 (RxNorm Extension) and maps to SNOMED 500.
# MedDRA 600 is outside the allowed vocabularies.

def _concept(concept_id, vocabulary_id, domain_id="Measurement", concept_class_id="Lab Test",
             standard_concept="S", invalid_reason=None, name=None):
    return Concept(
        concept_id=concept_id,
        concept_name=name or f"Concept {concept_id}",
        vocabulary_id=vocabulary_id,
        domain_id=domain_id,
        concept_class_id=concept_class_id,
        standard_concept=standard_concept,
        invalid_reason=invalid_reason,
        concept_code=f"C{concept_id}",
    )

CONCEPTS = [
    _concept(100, "LOINC", name="Heart rate"),
    _concept(101, "LOINC", name="Heart rate resting"),
    _concept(102, "LOINC", invalid_reason="D", standard_concept=None),
    _concept(123, "LOINC", name="Heart rate by Pulse oximetry"),
    _concept(124, "LOINC", standard_concept=None, name="Heart rate (non-standard)"),
    _concept(125, "LOINC", invalid_reason="D", name="Heart rate (deprecated)"),
    _concept(200, "SNOMED", concept_class_id="Observable Entity"),
    _concept(201, "SNOMED", concept_class_id="Observable Entity"),
    _concept(202, "SNOMED", domain_id="Drug", concept_class_id="Pharma/Biol Product"),
    _concept(300, "ICD10", domain_id="Condition", concept_class_id="ICD10 code"),
    _concept(400, "RxNorm", domain_id="Drug", concept_class_id="Ingredient"),
    _concept(401, "RxNorm", domain_id="Drug", concept_class_id="Clinical Drug"),
    _concept(402, "RxNorm", domain_id="Drug", concept_class_id="Branded Drug"),
    _concept(403, "RxNorm Extension", domain_id="Drug", concept_class_id="Clinical Drug"),
    _concept(500, "SNOMED", domain_id="Drug", concept_class_id="Clinical Drug"),
    _concept(600, "MedDRA", domain_id="Condition", concept_class_id="PT"),
    _concept(601, "MedDRA", domain_id="Condition", concept_class_id="LLT"),
    _concept(700, "RxNorm", domain_id="Drug", concept_class_id="Clinical Drug"),
]

RELATIONSHIPS = [
    ConceptRelationship(concept_id_1=100, concept_id_2=200, relationship_id="Maps to"),
    ConceptRelationship(concept_id_1=100, concept_id_2=202, relationship_id="Maps to"),
    ConceptRelationship(concept_id_1=700, concept_id_2=100, relationship_id="Mapped from"),
    ConceptRelationship(concept_id_1=101, concept_id_2=300, relationship_id="Mapped from"),
    ConceptRelationship(concept_id_1=400, concept_id_2=500, relationship_id="Maps to"),
    ConceptRelationship(concept_id_1=600, concept_id_2=100, relationship_id="Maps to"),
    # Not a mapping kind: must never be traversed.
    ConceptRelationship(concept_id_1=100, concept_id_2=201, relationship_id="Is a"),
]

def _closure(pairs):
    rows = [ConceptAncestor(ancestor_concept_id=c.concept_id, descendant_concept_id=c.concept_id) for c in CONCEPTS]
    rows += [
        ConceptAncestor(ancestor_concept_id=a, descendant_concept_id=d,
                        min_levels_of_separation=1, max_levels_of_separation=1)
        for a, d in pairs
    ]
    return rows

ANCESTORS = _closure([
    (100, 101), (100, 102),
    (200, 201),
    (400, 401), (400, 402), (400, 403),
    (600, 601),
])

SOURCE_CONCEPTS = [
    SourceConcept(row_id=1, vocabulary_id="LOCAL", concept_code="HR-01", concept_name="Heart rate", category="Vitals"),
    SourceConcept(row_id=2, vocabulary_id="LOCAL", concept_code="SPO2-01", concept_name="SpO2", category="Vitals"),
    SourceConcept(row_id=3, vocabulary_id="LOCAL", concept_code="NA-01", concept_name="Sodium", category="Labs"),
]


@pytest.fixture
def vocabulary() -> InMemoryVocabulary:
    """The test vocabulary graph held in memory."""
    return InMemoryVocabulary(CONCEPTS, RELATIONSHIPS, ANCESTORS)


def _write_tsv(path: Path, header: list, rows: list):
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f, delimiter='\t')
        writer.writerow(header)
        writer.writerows(rows)


@pytest.fixture
def athena_dir(tmp_path) -> Path:
    """Writes the test vocabulary as an Athena download (tab-delimited files)."""
    vocab_dir = tmp_path / "athena"
    vocab_dir.mkdir()
    _write_tsv(
        vocab_dir / "CONCEPT.csv",
        ["concept_id", "concept_name", "domain_id", "vocabulary_id", "concept_class_id",
         "standard_concept", "concept_code", "valid_start_date", "valid_end_date", "invalid_reason"],
        [[c.concept_id, c.concept_name, c.domain_id, c.vocabulary_id, c.concept_class_id,
          c.standard_concept or "", c.concept_code, "19700101", "20991231", c.invalid_reason or ""]
         for c in CONCEPTS],
    )
    _write_tsv(
        vocab_dir / "CONCEPT_RELATIONSHIP.csv",
        ["concept_id_1", "concept_id_2", "relationship_id", "valid_start_date", "valid_end_date", "invalid_reason"],
        [[r.concept_id_1, r.concept_id_2, r.relationship_id, "19700101", "20991231", ""] for r in RELATIONSHIPS],
    )
    _write_tsv(
        vocab_dir / "CONCEPT_ANCESTOR.csv",
        ["ancestor_concept_id", "descendant_concept_id", "min_levels_of_separation", "max_levels_of_separation"],
        [[a.ancestor_concept_id, a.descendant_concept_id, a.min_levels_of_separation, a.max_levels_of_separation]
         for a in ANCESTORS],
    )
    return vocab_dir


@pytest.fixture
def app_folder(tmp_path, monkeypatch) -> Path:
    """
    An app folder with one registered alignment (ID 1) holding SOURCE_CONCEPTS.
    The global settings point at it for the duration of the test.
    """
    folder = tmp_path / "app"
    monkeypatch.setattr(settings, "app_folder", str(folder))
    repository = AlignmentRepository(settings.concept_mapping_dir)
    repository.register_alignment("ICU vitals", SOURCE_CONCEPTS, description="Bedside monitoring parameters")
    return folder


@pytest.fixture
def mapping_dir(app_folder) -> Path:
    return settings.concept_mapping_dir


@pytest.fixture
def write_submission(mapping_dir):
    """Returns a helper that writes a submission JSON file into the concept_mapping folder."""
    def _write(mappings, alignment_id=1, category=None, filename="mappings_list.json", **extra):
        path = mapping_dir / filename
        payload = {"alignment_id": alignment_id, "category": category, "mappings": mappings, **extra}
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path
    return _write


def start_neo4j_container(factory):
    """
    Builds and starts a Neo4j container, skipping the calling test when Docker
    is not available. Building the container already contacts Docker.
    """
    try:
        container = factory(image="neo4j:5")
        container.start()
    except Exception as e:
        pytest.skip(f"Neo4j test container could not be started: {e}")
    return container


@pytest.fixture(scope="session")
def neo4j_container():
    """Starts a Neo4j container for the test session."""
    from testcontainers.neo4j import Neo4jContainer

    container = start_neo4j_container(Neo4jContainer)
    try:
        yield container
    finally:
        container.stop()


@pytest.fixture
def neo4j_driver(neo4j_container):
    """Provides a driver to the test container with an empty database."""
    driver = neo4j_container.get_driver()
    with driver.session() as session:
        session.run("MATCH (n) DETACH DELETE n")
    yield driver
    driver.close()
