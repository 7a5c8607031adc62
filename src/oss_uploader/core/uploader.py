"""Resumable upload of a local file to an object store.

The upload runs as a small state machine::

    VALIDATING -> SIMPLE_UPLOAD ---------------------------------> DONE
               -> MULTIPART_PLANNING -> MULTIPART_UPLOADING -> FINALIZING -> DONE

Every state is a method returning a :class:`StepResult`. Any failing state
moves the attempt to FAILED; retryable failures restart the whole machine
from VALIDATING through the operation-level :class:`RetryPolicy`, and the
checkpoint left behind by the failed attempt lets the next one resume.
"""

import logging
import mimetypes
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .checkpoint import CheckpointStore
from .chunker import ChunkSpec, choose_chunk_size, plan_chunks, read_range
from .exceptions import (
    FileChangedError,
    FinalizeError,
    NotAFileError,
    RetryExhaustedError,
    SessionNotFoundError,
    SourceFileNotFoundError,
    UploadFailedError,
    UploaderError,
    ValidationError,
    is_retryable,
)
from .fingerprint import compute_fingerprint
from .models import (
    DEFAULT_CHECKPOINT_DIR,
    DEFAULT_CHUNK_SIZE,
    SIMPLE_UPLOAD_THRESHOLD,
    Checkpoint,
    UploadResult,
    UploadSession,
    identity_matches,
)
from .retry import RetryPolicy
from .store import ObjectStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class UploadState(str, Enum):
    """States of one upload attempt."""

    VALIDATING = "validating"
    SIMPLE_UPLOAD = "simple_upload"
    MULTIPART_PLANNING = "multipart_planning"
    MULTIPART_UPLOADING = "multipart_uploading"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class StepStatus(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass
class StepResult:
    """Outcome of a single state transition."""

    status: StepStatus
    next_state: UploadState
    error: Optional[Exception] = None

    @classmethod
    def ok(cls, next_state: UploadState) -> "StepResult":
        return cls(StepStatus.SUCCESS, next_state)

    @classmethod
    def failed(cls, error: Exception) -> "StepResult":
        status = StepStatus.RETRYABLE if is_retryable(error) else StepStatus.FATAL
        return cls(status, UploadState.FAILED, error)

    @property
    def succeeded(self) -> bool:
        return self.status is StepStatus.SUCCESS


def _retry_part_on(exc: BaseException) -> bool:
    # A vanished session will not come back, only a fresh attempt can help
    return is_retryable(exc) and not isinstance(exc, SessionNotFoundError)


class ResumableUploader:
    """Upload one file, resuming from a local checkpoint when possible."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        file_path: str,
        object_key: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        simple_threshold: int = SIMPLE_UPLOAD_THRESHOLD,
        resumable: bool = True,
        checkpoint_store: Optional[CheckpointStore] = None,
        bucket: Optional[str] = None,
        part_retry: Optional[RetryPolicy] = None,
        operation_retry: Optional[RetryPolicy] = None,
        progress_callback: Optional[ProgressCallback] = None,
        content_type: Optional[str] = None,
    ) -> None:
        self.store = store
        self.file_path = file_path
        self.object_key = object_key
        self.chunk_size = chunk_size
        self.simple_threshold = simple_threshold
        self.resumable = resumable
        self.checkpoint_store = checkpoint_store
        if resumable and checkpoint_store is None:
            self.checkpoint_store = CheckpointStore(DEFAULT_CHECKPOINT_DIR)
        self.bucket = bucket
        self.progress_callback = progress_callback
        self.content_type = content_type

        part_retry = part_retry or RetryPolicy(max_retries=3)
        self.part_retry = RetryPolicy(
            max_retries=part_retry.max_retries,
            base_delay=part_retry.base_delay,
            max_delay=part_retry.max_delay,
            sleep=part_retry.sleep,
            retry_on=_retry_part_on,
        )
        self.operation_retry = operation_retry or RetryPolicy(max_retries=3)

        self.state = UploadState.VALIDATING
        self.attempts = 0
        self.session: Optional[UploadSession] = None
        self.plan: List[ChunkSpec] = []
        self.checkpoint: Optional[Checkpoint] = None
        self.checkpoint_path: Optional[Path] = None
        self.multipart = False
        self.resumed_from_checkpoint = False
        self.existing_parts = 0
        self.url: Optional[str] = None
        self.last_progress = -1

        self._handlers: Dict[UploadState, Callable[[], StepResult]] = {
            UploadState.VALIDATING: self.validate,
            UploadState.SIMPLE_UPLOAD: self.simple_upload,
            UploadState.MULTIPART_PLANNING: self.plan_multipart,
            UploadState.MULTIPART_UPLOADING: self.upload_parts,
            UploadState.FINALIZING: self.finalize,
        }

    def _report(self, percent: int) -> None:
        """Forward progress to the callback, never going backwards within an attempt."""
        if percent <= self.last_progress:
            return
        self.last_progress = percent
        if self.progress_callback:
            try:
                self.progress_callback(percent)
            except Exception as e:
                logger.warning(f"Progress callback error: {e}")

    @staticmethod
    def _percent(completed: int, total: int) -> int:
        if total <= 0:
            return 100
        # halves round up
        return (completed * 200 + total) // (total * 2)

    # States

    def validate(self) -> StepResult:
        """Check inputs and capture the size of the source file."""
        try:
            if not self.file_path:
                raise ValidationError("file_path", self.file_path, "is required")
            if not self.object_key:
                raise ValidationError("object_key", self.object_key, "is required")

            path = Path(self.file_path)
            if not path.exists():
                raise SourceFileNotFoundError(self.file_path)
            if not path.is_file():
                raise NotAFileError(self.file_path)

            file_size = path.stat().st_size
            chunk_size = choose_chunk_size(file_size, self.chunk_size)
            content_type = (
                self.content_type
                or mimetypes.guess_type(path.name)[0]
                or "application/octet-stream"
            )
            self.session = UploadSession(
                source_path=str(path.resolve()),
                object_key=self.object_key,
                file_size=file_size,
                chunk_size=chunk_size,
                content_type=content_type,
            )
        except Exception as exc:
            return StepResult.failed(exc)

        logger.info(
            f"Uploading {self.session.source_path} ({file_size} bytes) to key {self.object_key}"
        )
        self._report(0)
        if file_size == 0 or file_size < self.simple_threshold:
            return StepResult.ok(UploadState.SIMPLE_UPLOAD)
        return StepResult.ok(UploadState.MULTIPART_PLANNING)

    def simple_upload(self) -> StepResult:
        """Upload a small file with a single put."""
        session = self.session
        self.multipart = False
        try:
            self.url = self.part_retry.run(
                lambda: self.store.simple_put(
                    session.object_key, session.source_path, session.content_type
                ),
                f"put_object {session.object_key}",
            )
        except Exception as exc:
            return StepResult.failed(exc)

        self._report(100)
        return StepResult.ok(UploadState.DONE)

    def plan_multipart(self) -> StepResult:
        """Resume a matching checkpoint or open a new multipart session."""
        session = self.session
        self.multipart = True
        self.resumed_from_checkpoint = False
        self.existing_parts = 0
        try:
            session.content_fingerprint = compute_fingerprint(session.source_path)
            self.plan = plan_chunks(session.file_size, session.chunk_size)
            logger.info(
                f"File size: {session.file_size} bytes; will upload in {len(self.plan)} "
                f"parts of up to {session.chunk_size} bytes each"
            )

            if self.resumable:
                self.checkpoint_path = self.checkpoint_store.derive_path(
                    session.source_path, session.object_key
                )
                existing = self.checkpoint_store.load(self.checkpoint_path)
                if identity_matches(existing, session):
                    self.checkpoint = existing
                    self.resumed_from_checkpoint = True
                    self.existing_parts = len(existing.completed_parts)
                    logger.info(
                        f"Resuming existing upload {existing.session_id}: "
                        f"{self.existing_parts}/{len(self.plan)} parts already uploaded"
                    )
                    return StepResult.ok(UploadState.MULTIPART_UPLOADING)
                if existing is not None:
                    self._discard_stale(existing)

            session_id = self.part_retry.run(
                lambda: self.store.initiate_multipart(
                    session.object_key, session.content_type
                ),
                f"create_multipart_upload {session.object_key}",
            )
            self.checkpoint = Checkpoint(
                session_id=session_id,
                object_key=session.object_key,
                content_fingerprint=session.content_fingerprint,
                file_size=session.file_size,
                chunk_size=session.chunk_size,
                source_path=session.source_path,
                bucket=self.bucket,
            )
            if self.resumable:
                self.checkpoint_store.save(self.checkpoint, self.checkpoint_path)
        except Exception as exc:
            return StepResult.failed(exc)

        return StepResult.ok(UploadState.MULTIPART_UPLOADING)

    def _discard_stale(self, stale: Checkpoint) -> None:
        logger.info(
            f"Checkpoint {self.checkpoint_path} does not match the current file; starting over"
        )
        self.checkpoint_store.remove(self.checkpoint_path)
        try:
            self.store.abort_multipart(stale.object_key, stale.session_id)
        except UploaderError as e:
            logger.warning(f"Could not abort stale upload {stale.session_id}: {e}")

    def _upload_chunk(self, chunk: ChunkSpec) -> str:
        data = read_range(self.session.source_path, chunk.start, chunk.length)
        return self.store.upload_part(
            self.session.object_key, self.checkpoint.session_id, chunk.part_number, data
        )

    def upload_parts(self) -> StepResult:
        """Upload every part missing from the checkpoint, in ascending order."""
        total_parts = len(self.plan)
        start_time = time.time()
        uploaded_now = 0
        try:
            done = self.checkpoint.completed_part_numbers
            self._report(self._percent(len(done), total_parts))

            for chunk in self.plan:
                if chunk.part_number in done:
                    logger.debug(f"Part {chunk.part_number}: already uploaded, skipping")
                    continue

                logger.info(
                    f"Part {chunk.part_number}: reading bytes {chunk.start}-{chunk.end}"
                )
                etag = self.part_retry.run(
                    lambda chunk=chunk: self._upload_chunk(chunk),
                    f"Part {chunk.part_number}",
                )
                self.checkpoint.record_part(chunk.part_number, etag)
                if self.resumable:
                    self.checkpoint_store.save(self.checkpoint, self.checkpoint_path)
                uploaded_now += 1

                completed = len(self.checkpoint.completed_parts)
                percent = self._percent(completed, total_parts)
                elapsed = time.time() - start_time
                remaining_parts = total_parts - completed
                remaining = elapsed / uploaded_now * remaining_parts
                eta = time.strftime("%Hh %Mm %Ss", time.gmtime(remaining))
                logger.info(
                    f"Part {chunk.part_number}: uploaded, progress: {percent}%, "
                    f"est time remaining: {eta}"
                )
                self._report(percent)
        except SessionNotFoundError as exc:
            logger.warning(
                f"Upload session {self.checkpoint.session_id} no longer exists; "
                "dropping checkpoint"
            )
            if self.resumable:
                self.checkpoint_store.remove(self.checkpoint_path)
            return StepResult.failed(exc)
        except Exception as exc:
            return StepResult.failed(exc)

        return StepResult.ok(UploadState.FINALIZING)

    def finalize(self) -> StepResult:
        """Complete the multipart session and drop the checkpoint."""
        session = self.session
        checkpoint = self.checkpoint
        start_time = time.time()
        try:
            actual_size = os.path.getsize(session.source_path)
            if actual_size != session.file_size:
                raise FileChangedError(
                    session.source_path, expected=session.file_size, actual=actual_size
                )

            parts = checkpoint.sorted_parts()
            missing = {c.part_number for c in self.plan} - checkpoint.completed_part_numbers
            if missing:
                raise UploaderError(
                    f"Cannot complete upload, missing parts: {sorted(missing)}",
                    {"session_id": checkpoint.session_id},
                )

            try:
                self.url = self.store.complete_multipart(
                    session.object_key, checkpoint.session_id, parts
                )
            except SessionNotFoundError as exc:
                if self.resumable:
                    self.checkpoint_store.remove(self.checkpoint_path)
                raise FinalizeError(session.object_key, checkpoint.session_id, exc) from exc
            except Exception as exc:
                raise FinalizeError(session.object_key, checkpoint.session_id, exc) from exc
        except Exception as exc:
            return StepResult.failed(exc)

        if self.resumable:
            self.checkpoint_store.remove(self.checkpoint_path)
        self._report(100)

        elapsed = time.time() - start_time
        logger.info(
            f"Completed multipart upload {checkpoint.session_id} "
            f"({len(parts)} parts) in {elapsed:.2f}s"
        )
        return StepResult.ok(UploadState.DONE)

    # Driver

    def _abandon_session(self) -> None:
        """Abort the remote session of a failed attempt when not resuming later."""
        checkpoint = self.checkpoint
        self.checkpoint = None
        try:
            self.store.abort_multipart(checkpoint.object_key, checkpoint.session_id)
        except UploaderError as e:
            logger.warning(f"Could not abort upload {checkpoint.session_id}: {e}")

    def _on_attempt_failed(self, failed_state: UploadState, result: StepResult) -> None:
        logger.error(
            f"Attempt {self.attempts}: {failed_state.value} failed "
            f"({result.status.value}): {result.error}"
        )
        if failed_state not in (UploadState.MULTIPART_UPLOADING, UploadState.FINALIZING):
            return
        if self.checkpoint is None:
            return
        if self.resumable:
            logger.info(
                f"UploadId {self.checkpoint.session_id} left open for resumption. "
                f"Progress: {len(self.checkpoint.completed_parts)}/{len(self.plan)} parts uploaded"
            )
        else:
            self._abandon_session()

    def run_attempt(self) -> None:
        """Drive the state machine once from VALIDATING to DONE.

        Raises the error of the failing state so the operation retry policy
        can decide whether to try again.
        """
        self.attempts += 1
        self.last_progress = -1
        self.checkpoint = None
        self.state = UploadState.VALIDATING
        logger.info(f"Upload attempt {self.attempts} for {self.file_path}")

        while self.state not in (UploadState.DONE, UploadState.FAILED):
            current = self.state
            result = self._handlers[current]()
            self.state = result.next_state
            if not result.succeeded:
                self._on_attempt_failed(current, result)
                raise result.error

    def upload(self) -> UploadResult:
        """Upload the file, retrying whole attempts on transient failures.

        Raises:
            UploadFailedError: once the operation retry budget is spent or a
                permanent error occurs. ``last_error`` holds the cause.
        """
        start_time = time.time()
        self.attempts = 0
        try:
            self.operation_retry.run(self.run_attempt, f"Upload of {self.file_path}")
        except RetryExhaustedError as exc:
            raise UploadFailedError(
                f"Upload of {self.file_path} failed after {exc.attempts} attempt(s): "
                f"{exc.last_error}",
                attempts=exc.attempts,
                last_error=exc.last_error,
                file_path=self.file_path,
            ) from exc.last_error
        except Exception as exc:
            raise UploadFailedError(
                f"Upload of {self.file_path} failed: {exc}",
                attempts=self.attempts,
                last_error=exc,
                file_path=self.file_path,
            ) from exc

        session = self.session
        elapsed = time.time() - start_time
        speed = (session.file_size / (1024 * 1024)) / elapsed if elapsed > 0 else 0.0
        duration = time.strftime("%Hh %Mm %Ss", time.gmtime(elapsed))
        logger.info(f"Upload Speed {speed:.2f} MB/s, Duration {duration}")

        track_resume = self.multipart and self.resumable
        return UploadResult(
            url=self.url,
            origin_file_path=self.file_path,
            object_key=session.object_key,
            size=session.file_size,
            content_type=session.content_type,
            progress=max(self.last_progress, 0),
            multipart=self.multipart,
            resumed=self.resumed_from_checkpoint if track_resume else None,
            existing_parts=self.existing_parts if track_resume else None,
            total_parts=len(self.plan) if self.multipart else None,
            attempts=self.attempts,
        )
