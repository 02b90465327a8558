"""
Script repository loader.

Reads a root directory whose children are phase folders named NN-label
(e.g. 04-reference-data, 15-stored-procedures) and yields one LoadedScript
per .sql file.

Ordering within a phase:
- files with a numeric prefix ("010_seed.sql") first, by number then name
- files without one after, by name

Folders that do not name a phase 1..29 are ignored with a warning.
Unreadable or non-UTF-8 files are recorded as RepositoryLoadError entries;
they never abort the load.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

from sqldeploy.core.errors import RepositoryLoadError
from sqldeploy.domain.models.phases import find_phase

logger = logging.getLogger(__name__)

_PHASE_FOLDER_RE = re.compile(r"^(\d{1,2})-")
_NUMERIC_PREFIX_RE = re.compile(r"^(\d+)")


@dataclass(frozen=True)
class LoadedScript:
    """One script file, positioned in the fixed phase order."""
    phase: int
    ordinal: int
    raw_text: str
    path: str  # relative to the repository root, forward slashes

    @property
    def object_name(self) -> str:
        """File stem, used as the operation name until a CREATE is found."""
        return Path(self.path).stem


@dataclass
class LoadResult:
    """Scripts loaded plus the files that could not be read."""
    scripts: List[LoadedScript] = field(default_factory=list)
    errors: List[RepositoryLoadError] = field(default_factory=list)
    ignored_folders: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


def phase_from_folder(name: str) -> Optional[int]:
    """Phase number for a folder name, or None when it names no phase."""
    match = _PHASE_FOLDER_RE.match(name)
    if not match:
        return None
    number = int(match.group(1))
    return number if find_phase(number) else None


def _file_sort_key(path: Path) -> Tuple[int, int, str]:
    match = _NUMERIC_PREFIX_RE.match(path.name)
    if match:
        return (0, int(match.group(1)), path.name)
    return (1, 0, path.name)


class ScriptRepositoryLoader:
    """Loads phase-numbered SQL scripts from a directory tree."""

    def __init__(self, root: Union[str, Path], max_workers: int = 4):
        self.root = Path(root)
        self.max_workers = max_workers

    def load(self) -> LoadResult:
        """
        Read every script under the repository root.

        File reads fan out over a thread pool; results are re-joined in
        (phase, ordinal) order regardless of completion order.

        Returns:
            LoadResult with scripts ordered by (phase, ordinal)
        """
        result = LoadResult()
        if not self.root.is_dir():
            logger.warning(f"Script repository not found: {self.root}")
            return result

        positioned: List[Tuple[int, int, Path]] = []
        for folder in sorted(p for p in self.root.iterdir() if p.is_dir()):
            phase = phase_from_folder(folder.name)
            if phase is None:
                logger.warning(f"Ignoring folder that names no deployment phase: {folder.name}")
                result.ignored_folders.append(folder.name)
                continue

            files = sorted(
                (f for f in folder.iterdir() if f.is_file() and f.suffix.lower() == ".sql"),
                key=_file_sort_key,
            )
            for ordinal, path in enumerate(files, start=1):
                positioned.append((phase, ordinal, path))

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            outcomes = list(pool.map(self._read, positioned))

        for outcome in outcomes:
            if isinstance(outcome, RepositoryLoadError):
                logger.warning(f"Skipping script: {outcome}")
                result.errors.append(outcome)
            else:
                result.scripts.append(outcome)

        logger.info(
            f"Loaded {len(result.scripts)} scripts from {self.root} "
            f"({len(result.errors)} unreadable, {len(result.ignored_folders)} folders ignored)"
        )
        return result

    def _read(self, item: Tuple[int, int, Path]) -> Union[LoadedScript, RepositoryLoadError]:
        phase, ordinal, path = item
        relative = path.relative_to(self.root).as_posix()
        try:
            raw = path.read_bytes()
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            return RepositoryLoadError(f"Script is not valid UTF-8: {relative} ({e.reason})", relative)
        except OSError as e:
            return RepositoryLoadError(f"Script could not be read: {relative} ({e.strerror})", relative)
        return LoadedScript(phase=phase, ordinal=ordinal, raw_text=text, path=relative)
