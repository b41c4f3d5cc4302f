"""Exception taxonomy for the analysis pipeline."""
from __future__ import annotations


class FrauditError(Exception):
    """Base class for all pipeline errors."""


class MissingPrerequisiteError(FrauditError, LookupError):
    """A required upstream artifact (data, score, feature set, model) does not exist."""

    def __init__(self, artifact: str, statement_id: int | None = None, detail: str = ""):
        self.artifact = artifact
        self.statement_id = statement_id
        message = f"{artifact} not found"
        if statement_id is not None:
            message += f" for statement id: {statement_id}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class InvalidStateError(FrauditError):
    """The requested transition conflicts with the entity's current state."""


class UnknownModelTypeError(FrauditError, ValueError):
    """A model carries a type tag outside the supported strategy set."""

    def __init__(self, model_type: str):
        self.model_type = model_type
        super().__init__(f"Unknown model type: {model_type!r}")
