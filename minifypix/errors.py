"""Exception hierarchy for minifypix.

Stage errors carry where and on which file a failure happened. The
human-readable "Failed to optimize ..." message is only built by
OptimizeError, at the outer edge of the optimizer.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class MinifyPixError(Exception):
    """Base exception for all minifypix errors."""

    pass


class ConfigurationError(MinifyPixError):
    """Invalid config file or option override."""

    pass


class DiscoveryError(MinifyPixError):
    """Could not enumerate candidate files (git failure, missing directory)."""

    pass


class StageError(MinifyPixError):
    """A failure inside one step of the optimize pipeline."""

    stage = "unknown"

    def __init__(self, path: Path, cause: Optional[BaseException] = None, message: Optional[str] = None) -> None:
        self.path = Path(path)
        self.cause = cause
        self.message = message if message is not None else _describe(cause)
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class NotFoundError(StageError):
    stage = "probe"

    def __init__(self, path: Path, cause: Optional[BaseException] = None) -> None:
        super().__init__(path, cause, message=f"file not found: {path}")


class PermissionRepairError(StageError):
    stage = "repair"


class CompressionError(StageError):
    stage = "compress"


class CopyError(StageError):
    stage = "copy"


class OptimizeError(MinifyPixError):
    """Single external failure raised by SafeFileOptimizer.optimize()."""

    def __init__(self, path: Path, stage: str, cause: BaseException) -> None:
        self.path = path
        self.stage = stage
        self.cause = cause
        super().__init__(f"Failed to optimize {path}: {_describe(cause)}")


def _describe(cause: Optional[BaseException]) -> str:
    if cause is None:
        return "unknown error"
    text = str(cause)
    return text if text else cause.__class__.__name__
