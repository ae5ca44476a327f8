"""
Composable, non-mutating operations on AbundanceMatrix.

A Transform records its name and parameters at construction so that a chain
of corrections applied to a table can be reported afterwards. `apply` always
returns a new matrix; `validate` lists the problems that would make `apply`
fail, without raising.

Examples:
    >>> from zicombat import BatchAdjustment
    >>>
    >>> step = BatchAdjustment(batch="study", covariates=["disease"])
    >>> problems = step.validate(matrix)
    >>> adjusted = step.apply(matrix) if not problems else None
    >>> print(step)
    BatchAdjustment(batch=study, covariates=['disease'], ...)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from zicombat.core.abundance import AbundanceMatrix

__all__ = ['Transform']


class Transform(ABC):
    """
    Base class for operations that map one AbundanceMatrix to another.

    Attributes:
        name: Label used in reports (e.g., "BatchAdjustment")
        params: Parameters the operation was configured with
        timestamp: Construction time of this instance
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        self.name = name
        self.params = params
        self.timestamp = datetime.now()

    @abstractmethod
    def apply(self, matrix: AbundanceMatrix) -> AbundanceMatrix:
        """Return the transformed matrix; `matrix` is left untouched."""

    def validate(self, matrix: AbundanceMatrix) -> list[str]:
        """
        Problems that prevent `apply` from running on `matrix`.

        Subclasses extend the list returned by super().validate().
        """
        problems: list[str] = []
        if matrix.n_features == 0 or matrix.n_samples == 0:
            problems.append("Matrix has no features or no samples")
        return problems

    def __repr__(self) -> str:
        args = ", ".join(f"{key}={value}" for key, value in self.params.items())
        return f"{self.name}({args})"
