"""
Exceptions raised by the difficulty comparison pipeline.

Both classes derive from ValueError so callers that already guard
against bad input with ``except ValueError`` keep working.
"""


class ConfigurationError(ValueError):
    """Input tables or configuration artifacts do not fit together."""


class DataIntegrityError(ValueError):
    """Comparison records cannot support a well-posed model fit."""

    def __init__(self, message: str, cohort: str | None = None, items=None):
        self.cohort = cohort
        self.items = list(items) if items is not None else []
        if cohort is not None:
            message = f"[cohort '{cohort}'] {message}"
        super().__init__(message)
