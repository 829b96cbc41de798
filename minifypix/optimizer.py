from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
import os
import shutil
import tempfile
from typing import Any, Iterator, List, Mapping, Optional, Union

from .compressors import CompressorPlugin, compress, resolve_options
from .errors import CompressionError, CopyError, NotFoundError, OptimizeError, PermissionRepairError
from .log import get_logger
from .results import OptimizationResult
from .settings import OptimizationConfig


logger = get_logger(__name__)

# Marks staging copies and repair directories
LABEL = "-minify-pix-"


class SafeFileOptimizer:
    """
    Optimizes one file at a time, in place.

    The original path always holds a complete file: compression works on a
    sibling staging copy, and the original is only swapped out when the
    compressed copy is strictly smaller.
    """

    def __init__(self, config: Optional[OptimizationConfig] = None, cwd: Optional[Path] = None) -> None:
        self.config = config or OptimizationConfig()
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()

    def get_options(self, overrides: Optional[Mapping[str, Any]] = None) -> List[CompressorPlugin]:
        if overrides is None:
            overrides = self.config.overrides()
        return resolve_options(overrides)

    def optimize(self, file_path: Union[str, Path]) -> OptimizationResult:
        path = Path(file_path)
        stage = "probe"
        try:
            if not self.check_file_permissions(path):
                stage = "repair"
                logger.debug("{} is not readable+writable, repairing permissions", path)
                self.set_temp_file(path)

            stage = "stage"
            with self._staging_copy(path) as tmp_path:
                stage = "measure"
                original_size = path.stat().st_size

                stage = "compress"
                target_size = self.minify(tmp_path, tmp_path).st_size
                if target_size == 0:
                    raise CompressionError(tmp_path, message="compressor produced an empty file")

                stage = "replace"
                if target_size < original_size:
                    path.unlink()
                    tmp_path.rename(path)
                    optimized_size = target_size
                else:
                    tmp_path.unlink()
                    optimized_size = original_size

            if self.config.target is not None:
                stage = "copy"
                self.copy_to_target(path)

        except Exception as e:
            logger.debug("optimize failed at stage {} for {}: {}", stage, path, e)
            raise OptimizeError(file_path, getattr(e, "stage", stage), e) from e

        logger.debug("{}: {} -> {} bytes", path, original_size, optimized_size)
        return OptimizationResult.build(file_path, original_size, optimized_size)

    def minify(self, src: Path, dest: Path) -> os.stat_result:
        plugins = self.get_options()
        compress([src], dest.parent, plugins)
        return dest.stat()

    def check_file_permissions(self, path: Path, mode: int = os.R_OK | os.W_OK) -> bool:
        try:
            return os.access(path, mode)
        except (OSError, ValueError):
            return False

    def set_temp_file(self, path: Path) -> None:
        """
        Re-create `path` with the process's default ownership and permissions.

        The bytes are read into memory, written to a private temp dir, and
        renamed back over the original path. The temp dir is always removed.
        """
        try:
            image_data = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(path, e) from e
        except OSError as e:
            raise PermissionRepairError(path, e) from e

        with _private_temp_dir(path.parent) as tmp_dir:
            tmp_file_path = tmp_dir / path.name
            try:
                tmp_file_path.write_bytes(image_data)
                path.unlink()
                os.rename(tmp_file_path, path)
            except OSError as e:
                tmp_file_path.unlink(missing_ok=True)
                if not path.exists():
                    # Unlinked but never replaced: put the bytes back
                    try:
                        path.write_bytes(image_data)
                    except OSError as restore_error:
                        raise PermissionRepairError(
                            path,
                            e,
                            message=f"{e}; restoring the original also failed: {restore_error}",
                        ) from restore_error
                raise PermissionRepairError(path, e) from e

    def copy_file(self, path: Path) -> Path:
        """Copy `path` to its staging sibling, e.g. photo.jpg -> photo-minify-pix-.jpg."""
        new_path = staging_path(path)
        try:
            shutil.copyfile(path, new_path)
        except OSError:
            new_path.unlink(missing_ok=True)
            raise
        return new_path

    def copy_to_target(self, path: Path) -> Path:
        target_dir = (self.cwd / self.config.target).resolve()
        target_file = target_dir / path.name
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, target_file)
        except OSError as e:
            raise CopyError(path, e) from e
        return target_file

    @contextmanager
    def _staging_copy(self, path: Path) -> Iterator[Path]:
        tmp_path = self.copy_file(path)
        try:
            yield tmp_path
        except BaseException:
            # Only drop the staging copy while the original is still in place
            if path.exists():
                tmp_path.unlink(missing_ok=True)
            raise


def staging_path(path: Path) -> Path:
    return path.with_name(f"{path.stem}{LABEL}{path.suffix}")


@contextmanager
def _private_temp_dir(parent: Path) -> Iterator[Path]:
    # Same directory as the file, so the rename never crosses filesystems
    tmp_dir = Path(tempfile.mkdtemp(prefix=LABEL, dir=str(parent)))
    try:
        yield tmp_dir
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)
