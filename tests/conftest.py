"""Shared fixtures: an in-memory object store and helpers to build uploaders."""

import hashlib
import os
from collections import defaultdict
from typing import Dict, List

import pytest

from oss_uploader.core.checkpoint import CheckpointStore
from oss_uploader.core.exceptions import SessionNotFoundError, TransportError
from oss_uploader.core.models import MIB, CompletedPart
from oss_uploader.core.retry import RetryPolicy
from oss_uploader.core.store import ObjectStore
from oss_uploader.core.uploader import ResumableUploader


class FakeObjectStore(ObjectStore):
    """In-memory object store with programmable failures."""

    bucket = "test-bucket"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.sessions: Dict[str, dict] = {}
        self.uploaded_parts: List[int] = []
        self.completed: List[List[int]] = []
        self.aborted: List[str] = []
        self.calls: List[str] = []
        self.failures: Dict[str, list] = defaultdict(list)
        self.part_failures: Dict[int, list] = defaultdict(list)
        self._next_id = 0

    def fail(self, method: str, *errors: Exception) -> None:
        """Make the next calls of ``method`` raise ``errors`` in order."""
        self.failures[method].extend(errors)

    def fail_part(self, part_number: int, times: int, error: Exception = None) -> None:
        error = error or TransportError("connection reset", status_code=503)
        self.part_failures[part_number].extend([error] * times)

    def clear_failures(self) -> None:
        self.failures.clear()
        self.part_failures.clear()

    def _maybe_fail(self, method: str) -> None:
        self.calls.append(method)
        if self.failures[method]:
            raise self.failures[method].pop(0)

    def object_url(self, key: str) -> str:
        return f"https://{self.bucket}.example.com/{key}"

    def simple_put(self, key, path, content_type):
        self._maybe_fail("simple_put")
        with open(path, "rb") as f:
            self.objects[key] = f.read()
        return self.object_url(key)

    def initiate_multipart(self, key, content_type):
        self._maybe_fail("initiate_multipart")
        self._next_id += 1
        session_id = f"upload-{self._next_id}"
        self.sessions[session_id] = {"key": key, "parts": {}}
        return session_id

    def upload_part(self, key, session_id, part_number, data):
        self._maybe_fail("upload_part")
        if session_id not in self.sessions:
            raise SessionNotFoundError(session_id, operation="upload_part")
        if self.part_failures[part_number]:
            raise self.part_failures[part_number].pop(0)
        self.sessions[session_id]["parts"][part_number] = data
        self.uploaded_parts.append(part_number)
        return '"' + hashlib.md5(data).hexdigest() + '"'

    def complete_multipart(self, key, session_id, parts: List[CompletedPart]):
        self._maybe_fail("complete_multipart")
        if session_id not in self.sessions:
            raise SessionNotFoundError(session_id, operation="complete_multipart")
        numbers = [p.part_number for p in parts]
        assert numbers == sorted(numbers), "parts must be sorted by part number"
        stored = self.sessions.pop(session_id)["parts"]
        self.objects[key] = b"".join(stored[n] for n in numbers)
        self.completed.append(numbers)
        return self.object_url(key)

    def abort_multipart(self, key, session_id):
        self._maybe_fail("abort_multipart")
        self.sessions.pop(session_id, None)
        self.aborted.append(session_id)


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def checkpoints(tmp_path) -> CheckpointStore:
    return CheckpointStore(tmp_path / "checkpoints")


@pytest.fixture
def sleeps() -> List[float]:
    """Records every backoff delay instead of sleeping."""
    return []


@pytest.fixture
def make_file(tmp_path):
    """Write a file of ``size`` random bytes and return its path."""

    def _make_file(size: int, name: str = "payload.bin") -> str:
        path = tmp_path / name
        path.write_bytes(os.urandom(size))
        return str(path)

    return _make_file


@pytest.fixture
def make_uploader(store, checkpoints, sleeps):
    """Build a ResumableUploader wired to the fake store."""

    def _make_uploader(
        file_path: str,
        object_key: str = "docs/payload.bin",
        chunk_size: int = 1 * MIB,
        part_retries: int = 3,
        max_retries: int = 3,
        progress: list = None,
        **kwargs,
    ) -> ResumableUploader:
        return ResumableUploader(
            kwargs.pop("object_store", store),
            file_path=file_path,
            object_key=object_key,
            chunk_size=chunk_size,
            checkpoint_store=kwargs.pop("checkpoint_store", checkpoints),
            part_retry=RetryPolicy(
                max_retries=part_retries, base_delay=1.0, max_delay=8.0, sleep=sleeps.append
            ),
            operation_retry=RetryPolicy(
                max_retries=max_retries, base_delay=1.0, max_delay=8.0, sleep=sleeps.append
            ),
            progress_callback=progress.append if progress is not None else None,
            **kwargs,
        )

    return _make_uploader
