# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
from enum import Enum
from pydantic import BaseModel, Field
from typing import List, NamedTuple, Optional

class Concept(BaseModel):
    """
    Represents a single standard-vocabulary concept (an OMOP CONCEPT row).
    This is a node in the graph with the :Concept label.
    """
    concept_id: int
    concept_name: str
    vocabulary_id: str
    domain_id: str
    concept_class_id: str
    standard_concept: Optional[str] = None  # "S" for standard, "C" for classification
    invalid_reason: Optional[str] = None
    concept_code: str = ""

    @property
    def is_standard(self) -> bool:
        return self.standard_concept == "S"

    @property
    def is_valid(self) -> bool:
        return not self.invalid_reason


class ConceptRelationship(BaseModel):
    """
    Represents a relationship edge between two concepts (CONCEPT_RELATIONSHIP).
    Only the mapping kinds ("Maps to" / "Mapped from") are consumed.
    """
    concept_id_1: int
    concept_id_2: int
    relationship_id: str


class ConceptAncestor(BaseModel):
    """A row of the precomputed ancestor/descendant closure (CONCEPT_ANCESTOR)."""
    ancestor_concept_id: int
    descendant_concept_id: int
    min_levels_of_separation: int = 0
    max_levels_of_separation: int = 0


class SourceConcept(BaseModel):
    """A local source concept belonging to an alignment."""
    row_id: int
    vocabulary_id: str
    concept_code: str
    concept_name: str
    category: str = ""


class Alignment(BaseModel):
    """
    A registered batch of source concepts being mapped together.
    The source rows live in `<file_id>.csv` next to the registry.
    """
    alignment_id: int
    name: str
    description: str = ""
    file_id: str
    original_filename: str = ""
    created_date: str = ""


class MappingOrigin(str, Enum):
    CURATED = "curated"
    GENERATED = "generated"


class MappingKey(NamedTuple):
    source_group_id: int
    target_concept_id: int
    unit_concept_id: Optional[int]


class Mapping(BaseModel):
    """
    A source group -> standard concept association.
    The composite key (source_group_id, target_concept_id, unit_concept_id)
    is unique within a mapping set.
    """
    source_group_id: int
    target_concept_id: int
    unit_concept_id: Optional[int] = None
    recommended: bool = False
    origin: MappingOrigin = MappingOrigin.CURATED

    @property
    def key(self) -> MappingKey:
        return MappingKey(self.source_group_id, self.target_concept_id, self.unit_concept_id)


class ProposedMapping(BaseModel):
    """
    One submission row. A missing target_id means the code was explicitly left unmapped.
    The score is not range-checked here; out-of-range values are reported by validation.
    """
    code: str
    target_id: Optional[int] = None
    score: Optional[float] = None
    comment: Optional[str] = None

    @property
    def has_comment(self) -> bool:
        return bool(self.comment and self.comment.strip())


class Submission(BaseModel):
    """A proposed batch of mappings plus its batch metadata."""
    alignment_id: int
    category: Optional[str] = None
    alignment_name: Optional[str] = None
    description: Optional[str] = None
    mappings: List[ProposedMapping] = Field(default_factory=list)
