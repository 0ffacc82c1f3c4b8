# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Validation-gated export of a submission into a mapping package.

    Drafting -> Validating -> Failed
                           -> Committing -> Committed

Artifacts are drafted into a fresh scratch folder. On any validation error
the folder is kept for inspection and no archive is written. Otherwise the
folder is zipped to a temporary file that is renamed onto the final archive
path, and only then are the scratch folder and the submission file removed.
The returned `ExportResult` is the outcome; file existence is not.
"""
import csv
import json
import os
import shutil
import tempfile
import zipfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError
from rich.console import Console

from .config import settings
from .exceptions import PreconditionError, SubmissionFormatError
from .models import Concept, ProposedMapping, SourceConcept, Submission
from .sources import AlignmentRepository
from .validation import ValidationEngine, ValidationIssue, ValidationReport
from .vocabulary import VocabularyAccessor

console = Console()

FORMAT_TYPE = "CONCEPT_MAPPING_PACKAGE"
PACKAGE_FILES = ["metadata.json", "source_concepts.csv", "mappings.csv", "evaluations.csv", "comments.csv"]

SOURCE_CONCEPT_COLUMNS = ["row_id", "vocabulary_id", "concept_code", "concept_name", "category"]
MAPPING_COLUMNS = [
    "mapping_id", "row_id", "target_general_concept_id", "target_omop_concept_id",
    "target_custom_concept_id", "target_vocabulary_id", "target_concept_name",
    "mapping_datetime", "user_first_name", "user_last_name",
    "vocabulary_id", "concept_code", "confidence_score", "comment",
]
EVALUATION_COLUMNS = ["mapping_id", "is_approved", "comment", "evaluated_at", "user_first_name", "user_last_name"]
COMMENT_COLUMNS = ["mapping_id", "comment", "created_at", "user_first_name", "user_last_name"]


class ExportState(str, Enum):
    DRAFTING = "drafting"
    VALIDATING = "validating"
    FAILED = "failed"
    COMMITTING = "committing"
    COMMITTED = "committed"


class ExportStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PRECONDITION_FAILED = "precondition_failed"


class ExportResult(BaseModel):
    status: ExportStatus
    state: ExportState
    package_path: Optional[Path] = None
    scratch_path: Optional[Path] = None
    mapped_count: int = 0
    unmapped_count: int = 0
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == ExportStatus.SUCCESS


class DraftRow(BaseModel):
    source: SourceConcept
    proposal: ProposedMapping
    target: Optional[Concept] = None

    @property
    def is_mapped(self) -> bool:
        return self.proposal.target_id is not None


def load_submission(path: Path) -> Submission:
    """Reads a submission JSON file: {alignment_id, category?, mappings: [{code, target_id, score, comment}]}."""
    path = Path(path)
    if not path.exists():
        raise SubmissionFormatError(f"Submission file not found at: {path}")
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SubmissionFormatError(f"Submission file {path.name} could not be read: {e}") from e
    try:
        return Submission.model_validate_json(content)
    except ValidationError as e:
        raise SubmissionFormatError(f"Submission file {path.name} is not a valid mapping batch: {e}") from e


def _write_csv(path: Path, header: List[str], rows: List[list]):
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)


def _blank(value):
    return "" if value is None else value


class ExportPackager:
    """Turns a submission file into a mapping package, or into a failure report."""

    def __init__(
        self,
        vocabulary: VocabularyAccessor,
        alignments: AlignmentRepository,
        output_dir: Optional[Path] = None,
        validator: Optional[ValidationEngine] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.vocabulary = vocabulary
        self.alignments = alignments
        self.output_dir = Path(output_dir) if output_dir else settings.concept_mapping_dir
        self.validator = validator or ValidationEngine(vocabulary)
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.state = ExportState.DRAFTING

    def _transition(self, state: ExportState):
        self.state = state
        console.log(f"Export state: [bold cyan]{state.value}[/bold cyan]")

    def export(self, submission_path: Path, name: Optional[str] = None, description: Optional[str] = None) -> ExportResult:
        submission_path = Path(submission_path)
        exported_at = self._now()
        stamp = exported_at.strftime("%Y-%m-%d_%H-%M-%S")
        self._transition(ExportState.DRAFTING)

        scratch = None
        try:
            submission = load_submission(submission_path)
            alignment = self.alignments.get_alignment(submission.alignment_id)
            source_concepts = self.alignments.get_source_concepts(submission.alignment_id, submission.category)
            targets = self.vocabulary.fetch_concepts(
                {m.target_id for m in submission.mappings if m.target_id is not None}
            )

            rows = self._draft_rows(submission, source_concepts, targets)
            scratch = self._fresh_scratch(stamp)
            self._write_artifacts(
                scratch, rows, submission, exported_at,
                name=name or submission.alignment_name or alignment.name,
                description=description or submission.description or alignment.description,
            )

            self._transition(ExportState.VALIDATING)
            report = self.validator.validate(submission.mappings, source_concepts)
        except PreconditionError as e:
            self._transition(ExportState.FAILED)
            console.log(f"[red]Export precondition failed: {e}[/red]")
            return ExportResult(
                status=ExportStatus.PRECONDITION_FAILED,
                state=self.state,
                scratch_path=scratch,
                message=str(e),
            )

        mapped = sum(1 for r in rows if r.is_mapped)
        unmapped = len(rows) - mapped

        if not report.is_valid:
            self._transition(ExportState.FAILED)
            console.log(f"[red]Validation failed with {len(report.errors)} errors. Files kept in: {scratch}[/red]")
            return ExportResult(
                status=ExportStatus.FAILURE,
                state=self.state,
                scratch_path=scratch,
                mapped_count=mapped,
                unmapped_count=unmapped,
                errors=report.errors,
                warnings=report.warnings,
                message=f"Fix the errors in {submission_path.name} and re-run.",
            )

        self._transition(ExportState.COMMITTING)
        package_path = self._seal(scratch, stamp)
        shutil.rmtree(scratch)
        submission_path.unlink()
        self._transition(ExportState.COMMITTED)
        console.log(f"[green]Package created: {package_path}[/green]")
        return ExportResult(
            status=ExportStatus.SUCCESS,
            state=self.state,
            package_path=package_path,
            mapped_count=mapped,
            unmapped_count=unmapped,
            warnings=report.warnings,
            message=f"Package created: {package_path.name}",
        )

    def _draft_rows(self, submission: Submission, source_concepts: List[SourceConcept], targets: Dict[int, Concept]) -> List[DraftRow]:
        """One row per proposal whose code matches exactly one source concept."""
        by_code: Dict[str, List[SourceConcept]] = {}
        for concept in source_concepts:
            by_code.setdefault(concept.concept_code, []).append(concept)

        rows = []
        for proposal in submission.mappings:
            matches = by_code.get(proposal.code, [])
            if len(matches) != 1:
                continue
            target = targets.get(proposal.target_id) if proposal.target_id is not None else None
            rows.append(DraftRow(source=matches[0], proposal=proposal, target=target))
        return rows

    def _fresh_scratch(self, stamp: str) -> Path:
        scratch = self.output_dir / f"export_{stamp}"
        if scratch.exists():
            shutil.rmtree(scratch)
        scratch.mkdir(parents=True)
        console.log(f"Export folder: {scratch}")
        return scratch

    def _write_artifacts(self, scratch: Path, rows: List[DraftRow], submission: Submission,
                         exported_at: datetime, name: str, description: str):
        author_first, author_last = settings.author_first_name, settings.author_last_name
        timestamp = exported_at.strftime("%Y-%m-%d %H:%M:%S")

        _write_csv(scratch / "source_concepts.csv", SOURCE_CONCEPT_COLUMNS, [
            [r.source.row_id, r.source.vocabulary_id, r.source.concept_code,
             r.source.concept_name, submission.category or r.source.category]
            for r in rows
        ])

        mapping_rows = []
        comment_rows = []
        for mapping_id, r in enumerate(rows, start=1):
            mapping_rows.append([
                mapping_id,
                r.source.row_id,
                "",
                _blank(r.proposal.target_id),
                "",
                r.target.vocabulary_id if r.target else "",
                r.target.concept_name if r.target else "",
                timestamp,
                author_first,
                author_last,
                r.source.vocabulary_id,
                r.source.concept_code,
                _blank(r.proposal.score) if r.is_mapped else "",
                r.proposal.comment or "",
            ])
            if r.proposal.has_comment:
                comment_rows.append([mapping_id, r.proposal.comment, timestamp, author_first, author_last])
        _write_csv(scratch / "mappings.csv", MAPPING_COLUMNS, mapping_rows)
        _write_csv(scratch / "evaluations.csv", EVALUATION_COLUMNS, [])
        _write_csv(scratch / "comments.csv", COMMENT_COLUMNS, comment_rows)

        metadata = {
            "format_version": settings.format_version,
            "format_type": FORMAT_TYPE,
            "export_date": exported_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "exported_by": f"{author_first} {author_last}",
            "alignment": {
                "name": name,
                "description": description or "",
                "source_vocabulary": rows[0].source.vocabulary_id if rows else "",
            },
            "statistics": {
                "total_source_concepts": len(rows),
                "total_mappings": sum(1 for r in rows if r.is_mapped),
            },
        }
        (scratch / "metadata.json").write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        console.log(f"Drafted {len(PACKAGE_FILES)} package files for {len(rows)} source concepts.")

    def _archive_path(self, stamp: str) -> Path:
        path = self.output_dir / f"{settings.package_prefix}_{stamp}.zip"
        counter = 2
        while path.exists():
            path = self.output_dir / f"{settings.package_prefix}_{stamp}_{counter}.zip"
            counter += 1
        return path

    def _seal(self, scratch: Path, stamp: str) -> Path:
        """Zips the scratch folder to a temporary file, then renames it onto the final path."""
        final_path = self._archive_path(stamp)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{final_path.name}.", suffix=".part", dir=self.output_dir)
        os.close(fd)
        try:
            with zipfile.ZipFile(tmp_name, 'w', zipfile.ZIP_DEFLATED) as zf:
                for filename in PACKAGE_FILES:
                    zf.write(scratch / filename, arcname=filename)
            os.replace(tmp_name, final_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return final_path
