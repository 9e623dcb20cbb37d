"""
Pipeline Errors
===============

Schema and configuration problems abort a run. Row-level data quality issues
(bad dates, unmatched codes) never raise; they are filtered and reported.
"""

from typing import Iterable, Optional


class CodeListPipelineError(Exception):
    """Base class for fatal pipeline errors."""


class MissingColumnError(CodeListPipelineError):
    """An input file does not carry the columns its schema requires."""

    def __init__(self, missing: Iterable[str], source: Optional[str] = None):
        self.missing = sorted(missing)
        self.source = source
        where = f" in {source}" if source else ""
        super().__init__(f"Missing required column(s){where}: {', '.join(self.missing)}")


class PatternCompileError(CodeListPipelineError):
    """A classification rule is not a valid regular expression."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid classification pattern {pattern!r}: {reason}")


class UnknownDatabaseError(CodeListPipelineError):
    """Source database tag is neither GOLD nor Aurum."""

    def __init__(self, database):
        self.database = database
        super().__init__(
            f"Input argument 'database' must be either 'gold' or 'aurum', got {database!r}."
        )
