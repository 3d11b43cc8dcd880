"""Error taxonomy for the retrieval core."""
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class ErrorDetail:
    """Structured error information from a collaborator call."""
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class RAGError(Exception):
    """Base class for all retrieval core errors."""


class InputError(RAGError, ValueError):
    """Malformed options or arguments, rejected before any work starts."""


class DimensionMismatchError(RAGError, ValueError):
    """Vectors of different length were compared."""


class ParseError(RAGError):
    """Model output did not have the expected shape."""


class DependencyError(RAGError):
    """An embedding, search or LLM call failed."""

    def __init__(self, error: ErrorDetail):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code


class DependencyTimeoutError(DependencyError):
    """An external call exceeded its timeout."""
