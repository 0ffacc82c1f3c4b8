# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import pytest
from unittest.mock import MagicMock, call, patch
from pathlib import Path

from py_neo_concept_mapper.config import settings
from py_neo_concept_mapper.graph_loader import VocabularyGraphLoader

from .conftest import CONCEPTS, RELATIONSHIPS, start_neo4j_container


def test_ensure_constraints():
    driver = MagicMock()
    VocabularyGraphLoader(driver, "v5").ensure_constraints()
    queries = [c.args[0] for c in driver.execute_query.call_args_list]
    assert any("c.concept_id IS UNIQUE" in q for q in queries)
    assert any("Vocabulary_Meta" in q for q in queries)


def test_load_concepts_in_batches(monkeypatch):
    monkeypatch.setattr(settings, "batch_size", 5)
    driver = MagicMock()
    loader = VocabularyGraphLoader(driver, "v5", database="vocab")

    loader.load_concepts(CONCEPTS)

    calls = driver.execute_query.call_args_list
    assert len(calls) == 4  # 18 concepts in batches of 5
    first_params = calls[0].kwargs["parameters_"]
    assert first_params["version"] == "v5"
    assert [row["concept_id"] for row in first_params["rows"]] == [100, 101, 102, 123, 124]
    assert all(c.kwargs["database_"] == "vocab" for c in calls)


def test_load_relationships_uses_maps_to_edges():
    driver = MagicMock()
    VocabularyGraphLoader(driver, "v5").load_relationships(RELATIONSHIPS[:2])
    query = driver.execute_query.call_args.args[0]
    assert "MERGE (a)-[r:MAPS_TO {relationship_id: row.relationship_id}]->(b)" in query


def test_update_meta_node():
    driver = MagicMock()
    VocabularyGraphLoader(driver, "v5").update_meta_node()
    assert driver.execute_query.call_args.kwargs["parameters_"] == {"version": "v5"}


@patch('py_neo_concept_mapper.graph_loader.AthenaParser')
def test_run_import_orchestration(mock_parser, tmp_path):
    mock_parser.return_value.parse_files.return_value = ([], [], [])
    loader = VocabularyGraphLoader(MagicMock(), "v5")
    loader.ensure_constraints = MagicMock()
    loader.load_concepts = MagicMock()
    loader.load_relationships = MagicMock()
    loader.load_ancestors = MagicMock()
    loader.update_meta_node = MagicMock()

    loader.run_import(tmp_path)

    mock_parser.assert_called_once_with(tmp_path)
    loader.ensure_constraints.assert_called_once()
    loader.load_concepts.assert_called_once_with([])
    loader.load_relationships.assert_called_once_with([])
    loader.load_ancestors.assert_called_once_with([])
    loader.update_meta_node.assert_called_once()


def test_container_start_without_docker_skips():
    factory = MagicMock(side_effect=RuntimeError("Error while fetching server API version"))
    with pytest.raises(pytest.skip.Exception, match="could not be started"):
        start_neo4j_container(factory)
    factory.assert_called_once_with(image="neo4j:5")


def test_container_start_failure_skips():
    container = MagicMock()
    container.start.side_effect = ConnectionError("port not reachable")
    with pytest.raises(pytest.skip.Exception):
        start_neo4j_container(MagicMock(return_value=container))
