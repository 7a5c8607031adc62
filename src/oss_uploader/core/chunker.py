"""Chunk planning and ranged reads of the source file."""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from .exceptions import FileChangedError, ValidationError
from .models import MIN_CHUNK_SIZE

logger = logging.getLogger(__name__)

# S3-compatible stores (OSS included) accept at most 10,000 parts per upload
MAX_PARTS = 10_000


@dataclass(frozen=True)
class ChunkSpec:
    """One contiguous byte range of the source file."""

    part_number: int
    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length


def plan_chunks(file_size: int, chunk_size: int) -> List[ChunkSpec]:
    """Split ``file_size`` bytes into parts of ``chunk_size``.

    Parts are numbered from 1 and only the last one may be shorter than
    ``chunk_size``. An empty file yields an empty plan.
    """
    if chunk_size <= 0:
        raise ValidationError("chunk_size", chunk_size, "must be greater than 0")
    if file_size < 0:
        raise ValidationError("file_size", file_size, "must not be negative")

    total_parts = math.ceil(file_size / chunk_size)
    chunks = []
    for index in range(total_parts):
        start = index * chunk_size
        chunks.append(
            ChunkSpec(
                part_number=index + 1,
                start=start,
                length=min(chunk_size, file_size - start),
            )
        )
    return chunks


def choose_chunk_size(file_size: int, requested: Optional[int] = None) -> int:
    """Return a chunk size that respects the minimum and the part-count limit."""
    chunk_size = requested or MIN_CHUNK_SIZE
    if chunk_size < MIN_CHUNK_SIZE:
        raise ValidationError(
            "chunk_size", chunk_size, f"must be at least {MIN_CHUNK_SIZE} bytes"
        )

    if math.ceil(file_size / chunk_size) > MAX_PARTS:
        grown = math.ceil(file_size / MAX_PARTS)
        logger.warning(
            f"Chunk size {chunk_size} would need more than {MAX_PARTS} parts; "
            f"using {grown} bytes instead"
        )
        chunk_size = grown
    return chunk_size


def read_range(path: str, start: int, length: int) -> bytes:
    """Read exactly ``length`` bytes of ``path`` starting at ``start``.

    Raises:
        FileChangedError: if the file is now too short to satisfy the read.
    """
    with open(path, "rb") as f:
        f.seek(start)
        data = f.read(length)

    if len(data) != length:
        logger.error(
            f"Short read from {path}: wanted {length} bytes at offset {start}, got {len(data)}"
        )
        raise FileChangedError(path, expected=start + length, actual=start + len(data))
    return data
