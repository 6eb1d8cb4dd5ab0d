"""Validation package."""

from finledger.validation.validator import (
    StatementRecordValidator,
    issues_from_pydantic,
    parse_input,
    resolve_container,
)

__all__ = [
    "StatementRecordValidator",
    "issues_from_pydantic",
    "parse_input",
    "resolve_container",
]
