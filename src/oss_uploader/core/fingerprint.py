"""Whole-file content fingerprint used to validate checkpoint reuse."""

import hashlib
import logging

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "md5"
DEFAULT_BLOCK_SIZE = 1024 * 1024


def compute_fingerprint(
    path: str,
    algorithm: str = DEFAULT_ALGORITHM,
    block_size: int = DEFAULT_BLOCK_SIZE,
) -> str:
    """Hash the file at ``path`` block by block and return the hex digest.

    The digest only tells "same file" from "different file" when deciding
    whether a checkpoint can be resumed; it is never sent to the store.
    """
    logger.info(f"Calculating {algorithm} fingerprint of {path}...")
    digest = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(block_size), b""):
            digest.update(block)

    fingerprint = digest.hexdigest()
    logger.debug(f"Fingerprint of {path}: {fingerprint}")
    return fingerprint
