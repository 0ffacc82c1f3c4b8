# Copyright (c) 2025-2026 Gowtham Adamane Rao. All Rights Reserved.
#
# Licensed under the Prosperity Public License 3.0.0 (the "License").
# You may not use this file except in compliance with the License.
# You may obtain a copy of the License in the LICENSE file at the root
# of this repository, or at: https://prosperitylicense.com/versions/3.0.0
#
# Commercial use beyond a 30-day trial requires a separate license.
"""
Exceptions raised by the mapping engine.

Validation problems are never raised: they are returned as data by the
validation engine. Only precondition failures (missing batch, unreachable
vocabulary, unreadable submission) and storage misuse are exceptions.
"""


class ConceptMapperError(Exception):
    """Base class for all package errors."""


class PreconditionError(ConceptMapperError):
    """An input the invocation depends on is missing or unreachable."""


class BatchNotFoundError(PreconditionError):
    """The requested alignment or its source file does not exist."""


class MalformedBatchError(PreconditionError):
    """The source file of an alignment holds a row that cannot be read."""


class VocabularyUnavailableError(PreconditionError):
    """The vocabulary store cannot be queried."""


class SubmissionFormatError(PreconditionError):
    """The submission file cannot be read or does not have the expected shape."""


class UnitOfWorkError(ConceptMapperError):
    """A mapping store unit of work was used after it was closed."""


class DuplicateMappingError(ConceptMapperError):
    def __init__(self, key):
        super().__init__(f"Mapping {tuple(key)} already exists in the mapping store.")
        self.key = key
