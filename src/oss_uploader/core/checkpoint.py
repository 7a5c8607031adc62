"""Local persistence of multipart upload progress."""

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from .models import Checkpoint

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class CheckpointStore:
    """Stores one JSON checkpoint per (source file, object key) pair.

    The store does no locking: two uploads of the same file to the same key
    running at once will overwrite each other's checkpoint.
    """

    SUFFIX = ".json"

    def __init__(self, directory: PathLike):
        self.directory = Path(directory).expanduser()

    def derive_path(self, source_path: PathLike, object_key: str) -> Path:
        """Return the checkpoint location for a (source file, object key) pair."""
        source = os.path.abspath(str(source_path))
        digest = hashlib.sha256(f"{source}\n{object_key}".encode("utf-8")).hexdigest()
        return self.directory / f"{digest}{self.SUFFIX}"

    def path_for_id(self, checkpoint_id: str) -> Path:
        return self.directory / f"{checkpoint_id}{self.SUFFIX}"

    def load(self, path: PathLike) -> Optional[Checkpoint]:
        """Load a checkpoint, returning None if it is missing or unreadable."""
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read checkpoint {path}: {e}")
            return None

        try:
            return Checkpoint.model_validate_json(raw)
        except (PydanticValidationError, ValueError) as e:
            logger.warning(f"Ignoring corrupt checkpoint {path}: {e}")
            return None

    def save(self, checkpoint: Checkpoint, path: PathLike) -> None:
        """Write ``checkpoint`` to ``path`` via a temp file and an atomic rename."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.stem}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(checkpoint.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logger.debug(
            f"Checkpoint saved: {path} ({len(checkpoint.completed_parts)} parts)"
        )

    def remove(self, path: PathLike) -> None:
        """Delete a checkpoint; a missing file is not an error."""
        path = Path(path)
        try:
            path.unlink()
            logger.debug(f"Checkpoint removed: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove checkpoint {path}: {e}")

    def list_checkpoints(self) -> List[Tuple[Path, Checkpoint]]:
        """Return every readable checkpoint in the directory."""
        if not self.directory.is_dir():
            return []

        found = []
        for path in sorted(self.directory.glob(f"*{self.SUFFIX}")):
            checkpoint = self.load(path)
            if checkpoint is not None:
                found.append((path, checkpoint))
        return found
