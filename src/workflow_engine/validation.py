"""ValidationResult - findings of a validation pass."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List


@dataclass
class ValidationResult:
    """
    Outcome of validating a workflow or a connector config.

    Produced fresh on every call; never stored as authoritative state.
    """
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, message: str) -> None:
        self.errors.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def extend(self, other: "ValidationResult", prefix: str = "") -> None:
        """Append another result's findings, optionally prefixed."""
        self.errors.extend(prefix + e for e in other.errors)
        self.warnings.extend(prefix + w for w in other.warnings)

    def summary(self) -> str:
        return "; ".join(self.errors) if self.errors else "valid"

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_errors(cls, errors: Iterable[str]) -> "ValidationResult":
        return cls(errors=list(errors))


__all__ = ["ValidationResult"]
