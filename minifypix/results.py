from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union


@dataclass(frozen=True)
class OptimizationResult:
    """
    Outcome of optimizing a single file in place.

    optimized_size never exceeds original_size: when compression did not
    help, both sizes are the original size and saving is 0.
    """
    file_path: Union[str, Path]
    original_size: int
    optimized_size: int
    saving: int
    saving_percent: str  # e.g. "20.00%"

    @classmethod
    def build(cls, file_path: Union[str, Path], original_size: int, optimized_size: int) -> "OptimizationResult":
        saving = original_size - optimized_size
        return cls(
            file_path=file_path,
            original_size=original_size,
            optimized_size=optimized_size,
            saving=saving,
            saving_percent=format_percent(saving, original_size),
        )

    @property
    def changed(self) -> bool:
        return self.optimized_size < self.original_size


@dataclass(frozen=True)
class FileFailure:
    """A file the batch skipped, with the reason it failed."""
    path: Path
    reason: str


def format_percent(part: int, whole: int) -> str:
    if whole <= 0:
        return "0.00%"
    return f"{(part / whole) * 100:.2f}%"
