# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
import pytest

from py_neo_concept_mapper.config import Settings


def test_defaults(monkeypatch):
    for name in ("PYNEOCONCEPTMAPPER_ALLOWED_VOCABULARIES", "PYNEOCONCEPTMAPPER_LOW_CONFIDENCE_THRESHOLD"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings(_env_file=None)
    assert settings.allowed_vocabularies == ["RxNorm", "RxNorm Extension", "LOINC", "SNOMED", "ICD10"]
    assert settings.low_confidence_threshold == 0.8
    assert settings.vocabulary_backend == "neo4j"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("PYNEOCONCEPTMAPPER_LOW_CONFIDENCE_THRESHOLD", "0.6")
    monkeypatch.setenv("PYNEOCONCEPTMAPPER_ALLOWED_VOCABULARIES", '["LOINC", "SNOMED"]')
    monkeypatch.setenv("PYNEOCONCEPTMAPPER_APP_FOLDER", str(tmp_path))
    settings = Settings(_env_file=None)
    assert settings.low_confidence_threshold == 0.6
    assert settings.allowed_vocabularies == ["LOINC", "SNOMED"]
    assert settings.concept_mapping_dir == tmp_path / "concept_mapping"
