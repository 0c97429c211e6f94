import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from .models import Artifact

log = logging.getLogger(__name__)


def _matching_entries(directory: Path, extension: str) -> Iterator[os.DirEntry]:
    ext = extension.lower()
    try:
        with os.scandir(directory) as it:
            for entry in it:
                if entry.name.lower().endswith(ext) and entry.is_file():
                    yield entry
    except (FileNotFoundError, NotADirectoryError):
        log.debug("Artifact directory %s does not exist", directory)
    except OSError as exc:
        log.warning("Error scanning %s for artifacts: %s", directory, exc)


def list_artifacts(directory: Path, extension: str, url_prefix: str) -> List[Artifact]:
    """Every ``extension`` file in ``directory``, newest first.

    The directory is re-read on every call; ComfyUI writes into it on its own
    schedule, so polling this is the only way to notice finished jobs. Files
    sharing an mtime keep their enumeration order.
    """
    artifacts: List[Artifact] = []
    base = url_prefix.rstrip("/")
    for entry in _matching_entries(Path(directory), extension):
        try:
            st = entry.stat()
        except OSError:
            continue
        mtime = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
        artifacts.append(
            Artifact(
                name=entry.name,
                path=os.path.abspath(entry.path),
                url=f"{base}/{entry.name}",
                size=st.st_size,
                created=mtime,
                modified=mtime,
            )
        )
    # sorted() is stable with reverse=True as well
    return sorted(artifacts, key=lambda a: a.modified, reverse=True)


def latest_artifact(directory: Path, extension: str, url_prefix: str) -> Optional[Artifact]:
    artifacts = list_artifacts(directory, extension, url_prefix)
    return artifacts[0] if artifacts else None


def resolve_artifact(directory: Path, name: str, extension: str) -> Optional[Path]:
    # Only plain file names inside the directory, to avoid path traversal
    if not name or name != os.path.basename(name) or name in {".", ".."}:
        return None
    if not name.lower().endswith(extension.lower()):
        return None
    p = Path(directory) / name
    if not p.is_file():
        return None
    return p
