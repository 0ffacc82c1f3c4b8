# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Candidate mapping enrichment.

Each curated mapping is expanded through the vocabulary graph:

1. Same vocabulary: concepts linked to the target by a Maps to / Mapped from
   edge plus the target's descendants, kept only if they stay in the target's
   vocabulary.
2. Cross vocabulary (not for the RxNorm family): mapping edges from the
   target and step 1 into the other allowed vocabularies, RxNorm excluded.
3. Descendants of the step 2 concepts, in those same vocabularies.

Every step drops invalid concepts and Drug-domain concepts that are not
Clinical Drugs. Generated rows never take over a curated key, and the
recommended flags of the input are restored after the pass.
"""
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from pydantic import BaseModel
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from .config import settings
from .models import Concept, Mapping, MappingKey, MappingOrigin
from .vocabulary import VocabularyAccessor

console = Console()

DRUG_DOMAIN = "Drug"
CLINICAL_DRUG_CLASS = "Clinical Drug"


class VocabularyFamily(str, Enum):
    RXNORM_FAMILY = "rxnorm_family"
    CROSS_VOCAB_ELIGIBLE = "cross_vocab_eligible"


class MappingSet:
    """
    The accumulating mapping set, keyed by composite key.
    Insertion order is kept; `add_if_absent` is the only way rows get in.
    """

    def __init__(self, mappings: Iterable[Mapping] = ()):
        self._mappings: Dict[MappingKey, Mapping] = {}
        for mapping in mappings:
            self.add_if_absent(mapping)

    def __contains__(self, key: MappingKey) -> bool:
        return key in self._mappings

    def __len__(self) -> int:
        return len(self._mappings)

    def __iter__(self):
        return iter(self._mappings.values())

    def add_if_absent(self, mapping: Mapping) -> bool:
        if mapping.key in self._mappings:
            return False
        self._mappings[mapping.key] = mapping
        return True

    def restore_recommended(self, recommended_keys: Set[MappingKey]):
        """Sets recommended on exactly `recommended_keys` and clears it everywhere else."""
        for key, mapping in self._mappings.items():
            flag = key in recommended_keys
            if mapping.recommended != flag:
                self._mappings[key] = mapping.model_copy(update={"recommended": flag})

    def sorted(self) -> List[Mapping]:
        return sorted(
            self._mappings.values(),
            key=lambda m: (m.source_group_id, not m.recommended, m.target_concept_id,
                           m.unit_concept_id is not None, m.unit_concept_id or 0),
        )


class EnrichmentSummary(BaseModel):
    original_mappings: int
    final_mappings: int
    added_mappings: int
    recommended_mappings: int
    skipped_mappings: int


class EnrichmentResult(BaseModel):
    mappings: List[Mapping]
    summary: EnrichmentSummary


class EnrichmentEngine:
    """Expands curated mappings into generated candidates using a `VocabularyAccessor`."""

    def __init__(
        self,
        vocabulary: VocabularyAccessor,
        allowed_vocabularies: Optional[List[str]] = None,
        rxnorm_family: Optional[List[str]] = None,
    ):
        self.vocabulary = vocabulary
        self.allowed_vocabularies = list(
            settings.allowed_vocabularies if allowed_vocabularies is None else allowed_vocabularies
        )
        self.rxnorm_family = set(settings.rxnorm_family if rxnorm_family is None else rxnorm_family)
        self._strategies: Dict[VocabularyFamily, Callable[[Concept, Set[int]], Set[int]]] = {
            VocabularyFamily.RXNORM_FAMILY: self._same_vocabulary_only,
            VocabularyFamily.CROSS_VOCAB_ELIGIBLE: self._cross_vocabulary,
        }

    def classify(self, vocabulary_id: Optional[str]) -> Optional[VocabularyFamily]:
        """Returns None for vocabularies outside the allow-list; those are never expanded."""
        if vocabulary_id not in self.allowed_vocabularies:
            return None
        if vocabulary_id in self.rxnorm_family:
            return VocabularyFamily.RXNORM_FAMILY
        return VocabularyFamily.CROSS_VOCAB_ELIGIBLE

    def landing_vocabularies(self, vocabulary_id: str) -> List[str]:
        return [
            v for v in self.allowed_vocabularies
            if v != vocabulary_id and v not in self.rxnorm_family
        ]

    def _filter(self, concept_ids: Iterable[int], vocabularies: Iterable[str]) -> Set[int]:
        ids = set(concept_ids)
        if not ids:
            return set()
        vocabularies = set(vocabularies)
        kept = set()
        for concept in self.vocabulary.fetch_concepts(ids).values():
            if concept.vocabulary_id not in vocabularies or not concept.is_valid:
                continue
            if concept.domain_id == DRUG_DOMAIN and concept.concept_class_id != CLINICAL_DRUG_CLASS:
                continue
            kept.add(concept.concept_id)
        return kept

    def _mapping_neighbours(self, concept_ids: Set[int]) -> Set[int]:
        if not concept_ids:
            return set()
        return {edge.concept_id_2 for edge in self.vocabulary.fetch_mapping_edges(concept_ids)}

    def _descendants(self, concept_ids: Set[int]) -> Set[int]:
        if not concept_ids:
            return set()
        return {row.descendant_concept_id for row in self.vocabulary.fetch_descendants(concept_ids)}

    def same_vocabulary_step(self, target: Concept) -> Set[int]:
        related = self._mapping_neighbours({target.concept_id}) | self._descendants({target.concept_id})
        return self._filter(related, [target.vocabulary_id])

    def _same_vocabulary_only(self, target: Concept, step1: Set[int]) -> Set[int]:
        return step1

    def _cross_vocabulary(self, target: Concept, step1: Set[int]) -> Set[int]:
        landing = self.landing_vocabularies(target.vocabulary_id)
        step2 = self._filter(self._mapping_neighbours({target.concept_id} | step1), landing)
        step3 = self._filter(self._descendants(step2), landing)
        return step1 | step2 | step3

    def candidates_for(self, target: Concept) -> Set[int]:
        family = self.classify(target.vocabulary_id)
        if family is None:
            return set()
        step1 = self.same_vocabulary_step(target)
        return self._strategies[family](target, step1)

    def enrich(self, mappings: Iterable[Mapping]) -> EnrichmentResult:
        """
        Returns the input mappings plus generated candidates for every curated mapping.
        Running it again on its own output adds nothing.
        """
        original = list(mappings)
        recommended_keys = {m.key for m in original if m.recommended}
        mapping_set = MappingSet(original)
        original_count = len(mapping_set)

        curated = sorted(
            (m for m in mapping_set if m.origin == MappingOrigin.CURATED),
            key=lambda m: (m.source_group_id, m.target_concept_id, m.unit_concept_id or 0),
        )
        targets = self.vocabulary.fetch_concepts({m.target_concept_id for m in curated})
        console.log(f"Enriching {len(curated)} curated mappings against {len(self.allowed_vocabularies)} allowed vocabularies...")

        candidate_cache: Dict[int, Set[int]] = {}
        skipped = 0
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            "[progress.percentage]{task.percentage:>3.0f}%",
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Expanding mappings...", total=len(curated))
            for mapping in curated:
                progress.update(task, advance=1)
                target = targets.get(mapping.target_concept_id)
                if target is None or self.classify(target.vocabulary_id) is None:
                    skipped += 1
                    continue
                if target.concept_id not in candidate_cache:
                    candidate_cache[target.concept_id] = self.candidates_for(target)
                for concept_id in sorted(candidate_cache[target.concept_id]):
                    mapping_set.add_if_absent(Mapping(
                        source_group_id=mapping.source_group_id,
                        target_concept_id=concept_id,
                        unit_concept_id=mapping.unit_concept_id,
                        recommended=False,
                        origin=MappingOrigin.GENERATED,
                    ))

        mapping_set.restore_recommended(recommended_keys)

        final = mapping_set.sorted()
        summary = EnrichmentSummary(
            original_mappings=original_count,
            final_mappings=len(final),
            added_mappings=len(final) - original_count,
            recommended_mappings=sum(1 for m in final if m.recommended),
            skipped_mappings=skipped,
        )
        if skipped:
            console.log(f"[yellow]Skipped {skipped} curated mappings outside the allowed vocabularies.[/yellow]")
        console.log(f"[green]Enrichment complete: {summary.added_mappings} new mappings, {summary.final_mappings} in total.[/green]")
        return EnrichmentResult(mappings=final, summary=summary)
