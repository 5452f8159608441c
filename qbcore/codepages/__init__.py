"""Codepage storage, validation and versioning"""
from qbcore.codepages.fields import Codepage, CodepageVersion
from qbcore.codepages.manager import (
    CodepageError,
    CodepageExistsError,
    CodepageManager,
    CodepageNotFoundError,
    CodepageValidationError,
)
from qbcore.codepages.validator import ValidationResult, validate_codepage

__all__ = [
    "Codepage",
    "CodepageVersion",
    "CodepageError",
    "CodepageExistsError",
    "CodepageManager",
    "CodepageNotFoundError",
    "CodepageValidationError",
    "ValidationResult",
    "validate_codepage",
]
