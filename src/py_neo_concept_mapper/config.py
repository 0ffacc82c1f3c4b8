# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Literal

class Settings(BaseSettings):
    """
    Manages the application's configuration settings.
    Utilizes Pydantic's BaseSettings to allow for environment variable overrides.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="PYNEOCONCEPTMAPPER_"
    )

    # --- Neo4j Vocabulary Store ---
    neo4j_uri: str = Field("neo4j://localhost:7687", description="Neo4j instance URI.")
    neo4j_user: str = Field("neo4j", description="Neo4j username.")
    neo4j_password: str = Field("password", description="Neo4j password.")
    neo4j_database: str = Field("neo4j", description="Neo4j database holding the vocabulary graph.")

    vocabulary_backend: Literal["neo4j", "athena"] = Field(
        default="neo4j",
        description="Where vocabulary queries are answered: the Neo4j graph or Athena files loaded in memory."
    )
    athena_dir: str = Field(
        "./vocabulary",
        description="Directory with the Athena CONCEPT, CONCEPT_RELATIONSHIP and CONCEPT_ANCESTOR files."
    )

    # --- Enrichment Rules ---
    allowed_vocabularies: List[str] = Field(
        default=["RxNorm", "RxNorm Extension", "LOINC", "SNOMED", "ICD10"],
        description="Ordered list of vocabularies eligible for candidate expansion."
    )
    rxnorm_family: List[str] = Field(
        default=["RxNorm", "RxNorm Extension"],
        description="Vocabularies that are expanded within themselves only and never used as landing vocabularies."
    )
    mapping_relationships: List[str] = Field(
        default=["Maps to", "Mapped from"],
        description="Relationship ids treated as the undirected equivalence relation."
    )

    # --- Validation ---
    low_confidence_threshold: float = Field(
        default=0.8,
        description="Mapped rows scored below this value need a rationale comment."
    )

    # --- Export ---
    app_folder: str = Field(
        "./mapping_workspace",
        description="Root folder holding concept_mapping/ (alignments, submissions, packages)."
    )
    author_first_name: str = Field("Concept", description="Authoring identity written into packages.")
    author_last_name: str = Field("Mapper", description="Authoring identity written into packages.")
    package_prefix: str = Field("mapping_package", description="File name prefix of exported archives.")
    format_version: str = Field("1.0", description="Package format version recorded in the manifest.")

    # --- Optimization Settings ---
    batch_size: int = Field(
        default=10000,
        description="Rows per UNWIND batch when loading the vocabulary into Neo4j."
    )

    @property
    def concept_mapping_dir(self) -> Path:
        return Path(self.app_folder) / "concept_mapping"


# Instantiate a global settings object to be used throughout the application
settings = Settings()
