"""Per-execution scratch directories.

Every execution gets a directory named after its execution id below a
configurable base directory.  Interpreters run with it as their working
directory and the compiled-language path keeps its source file and binary
there, so concurrent executions never share a path.

Directories are removed when the execution finishes, whatever the outcome.
Removal is best effort: failures are logged and never change the reported
result.
"""

from __future__ import annotations

import contextlib
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator


logger = logging.getLogger("polyexec.scratch")


@dataclass(frozen=True)
class TemporaryArtifact:
    """Source file and output binary of one compile-then-run execution."""

    source_path: Path
    binary_path: Path

    def remove(self) -> None:
        for path in (self.source_path, self.binary_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Unable to remove artifact %s: %s", path, exc)


class ScratchSpace:
    """Allocate and reclaim scratch directories under ``base_dir``."""

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, execution_id: str) -> Path:
        return self.base_dir / execution_id

    @contextlib.contextmanager
    def workspace(self, execution_id: str) -> Iterator[Path]:
        """Create the scratch directory for ``execution_id`` and remove it on exit."""
        workdir = self.path_for(execution_id)
        workdir.mkdir(parents=True, exist_ok=False)
        try:
            yield workdir
        finally:
            self._remove_tree(workdir)

    def _remove_tree(self, workdir: Path) -> None:
        try:
            shutil.rmtree(workdir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Unable to remove scratch directory %s: %s", workdir, exc)


@contextlib.contextmanager
def artifact(workdir: Path, source_name: str, binary_name: str = "main.bin") -> Iterator[TemporaryArtifact]:
    """Reserve a source/binary pair inside ``workdir``; both are deleted on exit."""
    pair = TemporaryArtifact(workdir / source_name, workdir / binary_name)
    try:
        yield pair
    finally:
        pair.remove()
