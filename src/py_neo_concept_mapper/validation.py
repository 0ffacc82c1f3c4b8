# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Validation of a proposed mapping batch.

Every check runs on every submission; nothing short-circuits, so one call
returns the complete list of errors and warnings. Errors block export,
warnings never do.
"""
import math
from collections import Counter
from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field
from rich.console import Console

from .config import settings
from .models import ProposedMapping, SourceConcept
from .vocabulary import VocabularyAccessor

console = Console()


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueCode(str, Enum):
    # Errors
    UNKNOWN_SOURCE_CODE = "UnknownSourceCode"
    DUPLICATE_SOURCE_CODE = "DuplicateSourceCode"
    UNKNOWN_TARGET_CONCEPT = "UnknownTargetConcept"
    NON_STANDARD_TARGET = "NonStandardTarget"
    INVALID_TARGET = "InvalidTarget"
    SCORE_OUT_OF_RANGE = "ScoreOutOfRange"
    MAPPED_WITHOUT_SCORE = "MappedWithoutScore"
    UNMAPPED_WITH_SCORE = "UnmappedWithScore"
    # Warnings
    LOW_CONFIDENCE_NO_RATIONALE = "LowConfidenceNoRationale"
    UNMAPPED_NO_RATIONALE = "UnmappedNoRationale"


WARNING_CODES = {IssueCode.LOW_CONFIDENCE_NO_RATIONALE, IssueCode.UNMAPPED_NO_RATIONALE}


class ValidationIssue(BaseModel):
    code: IssueCode
    message: str
    source_code: Optional[str] = None
    target_id: Optional[int] = None

    @property
    def severity(self) -> Severity:
        return Severity.WARNING if self.code in WARNING_CODES else Severity.ERROR


class ValidationReport(BaseModel):
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def codes(self) -> List[IssueCode]:
        return [issue.code for issue in self.errors + self.warnings]


class ValidationEngine:
    """
    Checks a submission against its source batch and the vocabulary store.
    Reads the vocabulary once per call and changes nothing.
    """

    def __init__(self, vocabulary: VocabularyAccessor, low_confidence_threshold: Optional[float] = None):
        self.vocabulary = vocabulary
        self.low_confidence_threshold = (
            settings.low_confidence_threshold if low_confidence_threshold is None else low_confidence_threshold
        )

    def validate(self, mappings: Iterable[ProposedMapping], source_concepts: Iterable[SourceConcept]) -> ValidationReport:
        mappings = list(mappings)
        issues: List[ValidationIssue] = []
        issues += self._check_source_codes(mappings, {c.concept_code for c in source_concepts})
        issues += self._check_duplicates(mappings)
        issues += self._check_targets(mappings)
        issues += self._check_scores(mappings)
        issues += self._check_rationale(mappings)

        report = ValidationReport(
            errors=[i for i in issues if i.severity == Severity.ERROR],
            warnings=[i for i in issues if i.severity == Severity.WARNING],
        )
        console.log(
            f"Validated {len(mappings)} proposed mappings: "
            f"{len(report.errors)} errors, {len(report.warnings)} warnings."
        )
        return report

    def _check_source_codes(self, mappings: List[ProposedMapping], valid_codes: set) -> List[ValidationIssue]:
        issues = []
        reported = set()
        for m in mappings:
            if m.code in valid_codes or m.code in reported:
                continue
            reported.add(m.code)
            issues.append(ValidationIssue(
                code=IssueCode.UNKNOWN_SOURCE_CODE,
                source_code=m.code,
                message=f"Source code not found in alignment: {m.code}",
            ))
        return issues

    def _check_duplicates(self, mappings: List[ProposedMapping]) -> List[ValidationIssue]:
        counts = Counter(m.code for m in mappings)
        return [
            ValidationIssue(
                code=IssueCode.DUPLICATE_SOURCE_CODE,
                source_code=code,
                message=f"Duplicate source code: {code} appears {count} times",
            )
            for code, count in counts.items() if count > 1
        ]

    def _check_targets(self, mappings: List[ProposedMapping]) -> List[ValidationIssue]:
        mapped = [m for m in mappings if m.target_id is not None]
        if not mapped:
            return []
        found = self.vocabulary.fetch_concepts({m.target_id for m in mapped})

        issues = []
        for m in mapped:
            concept = found.get(m.target_id)
            if concept is None:
                issues.append(ValidationIssue(
                    code=IssueCode.UNKNOWN_TARGET_CONCEPT, source_code=m.code, target_id=m.target_id,
                    message=f"Target concept not found: {m.target_id} (source code {m.code})",
                ))
                continue
            if not concept.is_standard:
                issues.append(ValidationIssue(
                    code=IssueCode.NON_STANDARD_TARGET, source_code=m.code, target_id=m.target_id,
                    message=f"Non-standard concept: {m.target_id} (source code {m.code})",
                ))
            if not concept.is_valid:
                issues.append(ValidationIssue(
                    code=IssueCode.INVALID_TARGET, source_code=m.code, target_id=m.target_id,
                    message=f"Invalid concept: {m.target_id} ({concept.invalid_reason}, source code {m.code})",
                ))
        return issues

    def _check_scores(self, mappings: List[ProposedMapping]) -> List[ValidationIssue]:
        issues = []
        for m in mappings:
            if m.score is not None and (math.isnan(m.score) or not 0 <= m.score <= 1):
                issues.append(ValidationIssue(
                    code=IssueCode.SCORE_OUT_OF_RANGE, source_code=m.code, target_id=m.target_id,
                    message=f"Score out of range [0, 1]: {m.score} (source code {m.code})",
                ))
            if m.target_id is not None and m.score is None:
                issues.append(ValidationIssue(
                    code=IssueCode.MAPPED_WITHOUT_SCORE, source_code=m.code, target_id=m.target_id,
                    message=f"Mapped without score: {m.code}",
                ))
            if m.target_id is None and m.score is not None:
                issues.append(ValidationIssue(
                    code=IssueCode.UNMAPPED_WITH_SCORE, source_code=m.code,
                    message=f"Unmapped with score: {m.code}",
                ))
        return issues

    def _check_rationale(self, mappings: List[ProposedMapping]) -> List[ValidationIssue]:
        issues = []
        for m in mappings:
            if m.has_comment:
                continue
            if m.score is not None and m.score < self.low_confidence_threshold:
                issues.append(ValidationIssue(
                    code=IssueCode.LOW_CONFIDENCE_NO_RATIONALE, source_code=m.code, target_id=m.target_id,
                    message=f"Low confidence ({m.score}) without comment: {m.code}",
                ))
            if m.target_id is None:
                issues.append(ValidationIssue(
                    code=IssueCode.UNMAPPED_NO_RATIONALE, source_code=m.code,
                    message=f"Unmapped without explanation: {m.code}",
                ))
        return issues
