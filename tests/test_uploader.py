"""Tests for the resumable upload state machine against the in-memory store."""

from pathlib import Path

import pytest

from oss_uploader.core.exceptions import (
    FileChangedError,
    FinalizeError,
    InsufficientStorageError,
    NotAFileError,
    RetryExhaustedError,
    SessionNotFoundError,
    SourceFileNotFoundError,
    TransportError,
    UploadFailedError,
    ValidationError,
)
from oss_uploader.core.fingerprint import compute_fingerprint
from oss_uploader.core.models import MIB, Checkpoint
from oss_uploader.core.uploader import StepStatus, UploadState

KEY = "docs/payload.bin"


def checkpoint_path(checkpoints, file_path, key=KEY):
    return checkpoints.derive_path(str(Path(file_path).resolve()), key)


class TestSimpleUpload:
    def test_small_file_uses_single_put(self, store, checkpoints, make_file, make_uploader):
        # Scenario A: 500 KB is under the 1 MiB threshold
        path = make_file(500 * 1000)
        progress = []

        result = make_uploader(path, progress=progress).upload()

        assert progress == [0, 100]
        assert store.calls == ["simple_put"]
        assert store.objects[KEY] == Path(path).read_bytes()
        assert result.multipart is False
        assert result.resumed is None
        assert result.total_parts is None
        assert result.url == store.object_url(KEY)
        assert result.size == 500 * 1000
        assert result.progress == 100
        assert not checkpoints.directory.exists()

    def test_empty_file_is_a_simple_put(self, store, make_file, make_uploader):
        path = make_file(0)

        result = make_uploader(path, simple_threshold=0).upload()

        assert store.objects[KEY] == b""
        assert result.multipart is False

    def test_transient_put_failure_is_retried(self, store, make_file, make_uploader, sleeps):
        path = make_file(1000)
        store.fail("simple_put", TransportError("reset"))

        result = make_uploader(path).upload()

        assert store.calls == ["simple_put", "simple_put"]
        assert sleeps == [1.0]
        assert result.attempts == 1

    def test_content_type_is_guessed_from_name(self, store, make_file, make_uploader):
        path = make_file(1000, name="report.pdf")

        result = make_uploader(path, object_key="report.pdf").upload()

        assert result.content_type == "application/pdf"


class TestMultipartUpload:
    def test_fresh_upload(self, store, checkpoints, make_file, make_uploader):
        path = make_file(3 * MIB)
        progress = []

        result = make_uploader(path, progress=progress).upload()

        assert progress == [0, 33, 67, 100]
        assert store.uploaded_parts == [1, 2, 3]
        assert store.completed == [[1, 2, 3]]
        assert store.objects[KEY] == Path(path).read_bytes()
        assert result.multipart is True
        assert result.resumed is False
        assert result.existing_parts == 0
        assert result.total_parts == 3
        assert result.attempts == 1
        assert not checkpoint_path(checkpoints, path).exists()

    def test_progress_rounds_halves_up(self, make_file, make_uploader):
        path = make_file(8 * 200 * 1024)
        progress = []

        make_uploader(path, chunk_size=200 * 1024, progress=progress).upload()

        assert progress == [0, 13, 25, 38, 50, 63, 75, 88, 100]

    def test_resumed_upload_reports_zero_first(self, store, make_file, make_uploader):
        path = make_file(3 * MIB)
        store.fail_part(3, times=100)
        with pytest.raises(UploadFailedError):
            make_uploader(path, part_retries=0, max_retries=0).upload()

        store.clear_failures()
        progress = []
        make_uploader(path, progress=progress).upload()

        assert progress == [0, 67, 100]

    def test_interrupted_upload_resumes_with_missing_parts_only(
        self, store, checkpoints, make_file, make_uploader
    ):
        # Scenario B: 12 MB in 5 MB chunks, interrupted after part 2
        path = make_file(12 * MIB)
        store.fail_part(3, times=100)
        with pytest.raises(UploadFailedError):
            make_uploader(path, chunk_size=5 * MIB, part_retries=0, max_retries=0).upload()

        saved = checkpoints.load(checkpoint_path(checkpoints, path))
        assert saved.completed_part_numbers == {1, 2}
        assert store.objects == {}

        store.clear_failures()
        store.uploaded_parts.clear()
        progress = []
        result = make_uploader(path, chunk_size=5 * MIB, progress=progress).upload()

        assert store.uploaded_parts == [3]
        assert store.completed == [[1, 2, 3]]
        assert store.objects[KEY] == Path(path).read_bytes()
        assert progress == [0, 67, 100]
        assert result.resumed is True
        assert result.existing_parts == 2
        assert result.total_parts == 3
        assert not checkpoint_path(checkpoints, path).exists()

    def test_corrupt_checkpoint_starts_fresh(self, store, checkpoints, make_file, make_uploader):
        # Scenario C
        path = make_file(3 * MIB)
        location = checkpoint_path(checkpoints, path)
        location.parent.mkdir(parents=True)
        location.write_text('{"session_id": "upload-9", "completed_parts": [{"part_nu')

        result = make_uploader(path).upload()

        assert store.calls.count("initiate_multipart") == 1
        assert store.uploaded_parts == [1, 2, 3]
        assert result.resumed is False
        assert not location.exists()

    def test_exhausted_part_retries_keep_checkpoint(
        self, store, checkpoints, make_file, make_uploader, sleeps
    ):
        # Scenario D: part 2 of 3 never succeeds
        path = make_file(3 * MIB)
        store.fail_part(2, times=100)

        with pytest.raises(UploadFailedError) as exc_info:
            make_uploader(path, part_retries=3, max_retries=0).upload()

        saved = checkpoints.load(checkpoint_path(checkpoints, path))
        assert [p.part_number for p in saved.completed_parts] == [1]
        assert store.uploaded_parts == [1]
        assert store.calls.count("upload_part") == 1 + 4
        assert sleeps == [1.0, 2.0, 4.0]
        assert store.aborted == []
        assert saved.session_id in store.sessions

        error = exc_info.value
        assert error.attempts == 1
        assert isinstance(error.last_error, RetryExhaustedError)
        assert isinstance(error.root_cause, TransportError)

    def test_changed_content_discards_checkpoint(
        self, store, checkpoints, make_file, make_uploader
    ):
        path = make_file(3 * MIB)
        store.fail_part(2, times=100)
        with pytest.raises(UploadFailedError):
            make_uploader(path, part_retries=0, max_retries=0).upload()
        stale = checkpoints.load(checkpoint_path(checkpoints, path))

        # same size, different bytes
        Path(path).write_bytes(b"\x00" * (3 * MIB))
        store.clear_failures()
        store.uploaded_parts.clear()
        result = make_uploader(path).upload()

        assert store.uploaded_parts == [1, 2, 3]
        assert stale.session_id in store.aborted
        assert result.resumed is False
        assert store.objects[KEY] == b"\x00" * (3 * MIB)

    def test_changed_chunk_size_discards_checkpoint(
        self, store, checkpoints, make_file, make_uploader
    ):
        path = make_file(3 * MIB)
        store.fail_part(2, times=100)
        with pytest.raises(UploadFailedError):
            make_uploader(path, part_retries=0, max_retries=0).upload()

        store.clear_failures()
        store.uploaded_parts.clear()
        result = make_uploader(path, chunk_size=2 * MIB).upload()

        assert store.uploaded_parts == [1, 2]
        assert result.resumed is False

    def test_outer_retry_resumes_from_checkpoint(self, store, make_file, make_uploader, sleeps):
        path = make_file(3 * MIB)
        store.fail_part(2, times=4)
        progress = []

        result = make_uploader(path, part_retries=3, max_retries=3, progress=progress).upload()

        assert result.attempts == 2
        assert result.resumed is True
        assert result.existing_parts == 1
        assert store.uploaded_parts == [1, 2, 3]
        assert store.calls.count("initiate_multipart") == 1
        assert sleeps == [1.0, 2.0, 4.0, 1.0]
        assert progress == [0, 33, 0, 33, 67, 100]

    def test_outer_retry_budget_exhausted(self, store, checkpoints, make_file, make_uploader, sleeps):
        path = make_file(3 * MIB)
        store.fail_part(1, times=100)

        with pytest.raises(UploadFailedError) as exc_info:
            make_uploader(path, part_retries=0, max_retries=2).upload()

        assert exc_info.value.attempts == 3
        assert sleeps == [1.0, 2.0]
        assert checkpoints.load(checkpoint_path(checkpoints, path)) is not None

    def test_finalize_failure_is_retried_without_reuploading(
        self, store, checkpoints, make_file, make_uploader
    ):
        path = make_file(3 * MIB)
        store.fail("complete_multipart", TransportError("gateway timeout", status_code=504))

        result = make_uploader(path).upload()

        assert result.attempts == 2
        assert result.resumed is True
        assert result.existing_parts == 3
        assert store.uploaded_parts == [1, 2, 3]
        assert store.completed == [[1, 2, 3]]
        assert not checkpoint_path(checkpoints, path).exists()

    def test_fatal_finalize_failure_keeps_checkpoint(
        self, store, checkpoints, make_file, make_uploader
    ):
        path = make_file(3 * MIB)
        store.fail("complete_multipart", InsufficientStorageError())

        with pytest.raises(UploadFailedError) as exc_info:
            make_uploader(path).upload()

        assert exc_info.value.attempts == 1
        assert isinstance(exc_info.value.last_error, FinalizeError)
        saved = checkpoints.load(checkpoint_path(checkpoints, path))
        assert saved.completed_part_numbers == {1, 2, 3}

    def test_lost_remote_session_restarts_fresh(
        self, store, checkpoints, make_file, make_uploader, sleeps
    ):
        path = make_file(3 * MIB)
        location = checkpoint_path(checkpoints, path)
        ghost = Checkpoint(
            session_id="ghost-session",
            object_key=KEY,
            content_fingerprint=compute_fingerprint(path),
            file_size=3 * MIB,
            chunk_size=MIB,
        )
        ghost.record_part(1, '"etag-1"')
        checkpoints.save(ghost, location)

        result = make_uploader(path).upload()

        assert result.attempts == 2
        assert result.resumed is False
        assert store.uploaded_parts == [1, 2, 3]
        assert sleeps == [1.0]
        assert not location.exists()

    def test_non_resumable_mode_aborts_failed_sessions(
        self, store, checkpoints, make_file, make_uploader
    ):
        path = make_file(3 * MIB)
        store.fail_part(2, times=100)

        with pytest.raises(UploadFailedError):
            make_uploader(path, resumable=False, part_retries=0, max_retries=1).upload()

        assert store.aborted == ["upload-1", "upload-2"]
        assert store.sessions == {}
        assert not checkpoints.directory.exists()

    def test_non_resumable_success_reports_no_resume_info(
        self, store, checkpoints, make_file, make_uploader
    ):
        path = make_file(3 * MIB)

        result = make_uploader(path, resumable=False).upload()

        assert result.resumed is None
        assert result.existing_parts is None
        assert result.total_parts == 3
        assert not checkpoints.directory.exists()

    def test_failing_progress_callback_does_not_break_upload(self, store, make_file, make_uploader):
        path = make_file(3 * MIB)

        def explode(percent):
            raise RuntimeError("ui went away")

        uploader = make_uploader(path)
        uploader.progress_callback = explode

        assert uploader.upload().progress == 100


class TestValidation:
    def test_missing_file_fails_without_retry(self, tmp_path, make_uploader, sleeps):
        with pytest.raises(UploadFailedError) as exc_info:
            make_uploader(str(tmp_path / "missing.bin")).upload()

        assert isinstance(exc_info.value.last_error, SourceFileNotFoundError)
        assert exc_info.value.attempts == 1
        assert sleeps == []

    def test_directory_is_not_a_file(self, tmp_path, make_uploader):
        with pytest.raises(UploadFailedError) as exc_info:
            make_uploader(str(tmp_path)).upload()

        assert isinstance(exc_info.value.last_error, NotAFileError)

    @pytest.mark.parametrize("field", ["file_path", "object_key"])
    def test_required_fields(self, make_file, make_uploader, field):
        path = make_file(10)
        kwargs = {"file_path": path, "object_key": KEY}
        kwargs[field] = ""

        with pytest.raises(UploadFailedError) as exc_info:
            make_uploader(kwargs.pop("file_path"), **kwargs).upload()

        assert isinstance(exc_info.value.last_error, ValidationError)
        assert exc_info.value.last_error.field == field

    def test_chunk_size_below_minimum(self, make_file, make_uploader):
        path = make_file(3 * MIB)

        with pytest.raises(UploadFailedError) as exc_info:
            make_uploader(path, chunk_size=1024).upload()

        assert isinstance(exc_info.value.last_error, ValidationError)


class TestStates:
    def test_validate_branches_on_size(self, make_file, make_uploader):
        small = make_uploader(make_file(MIB - 1, name="small.bin"))
        large = make_uploader(make_file(MIB, name="large.bin"))

        assert small.validate().next_state is UploadState.SIMPLE_UPLOAD
        assert large.validate().next_state is UploadState.MULTIPART_PLANNING

    def test_validate_reports_fatal_result(self, tmp_path, make_uploader):
        result = make_uploader(str(tmp_path / "missing.bin")).validate()

        assert result.status is StepStatus.FATAL
        assert result.next_state is UploadState.FAILED
        assert isinstance(result.error, SourceFileNotFoundError)

    def test_planning_persists_checkpoint_before_any_part(
        self, store, checkpoints, make_file, make_uploader
    ):
        path = make_file(3 * MIB)
        uploader = make_uploader(path)

        assert uploader.validate().succeeded
        result = uploader.plan_multipart()

        assert result.next_state is UploadState.MULTIPART_UPLOADING
        saved = checkpoints.load(checkpoint_path(checkpoints, path))
        assert saved.session_id == "upload-1"
        assert saved.completed_parts == []
        assert saved.file_size == 3 * MIB
        assert saved.source_path == str(Path(path).resolve())

    def test_file_shrinking_mid_upload_is_retryable(self, store, make_file, make_uploader):
        path = make_file(3 * MIB)
        uploader = make_uploader(path, part_retries=0)
        uploader.validate()
        uploader.plan_multipart()

        with open(path, "r+b") as f:
            f.truncate(MIB + 10)
        result = uploader.upload_parts()

        assert result.status is StepStatus.RETRYABLE
        assert isinstance(result.error.last_error, FileChangedError)
        assert store.uploaded_parts == [1]

    def test_finalize_detects_size_change(self, store, make_file, make_uploader):
        path = make_file(3 * MIB)
        uploader = make_uploader(path)
        uploader.validate()
        uploader.plan_multipart()
        uploader.upload_parts()

        with open(path, "ab") as f:
            f.write(b"more")
        result = uploader.finalize()

        assert result.status is StepStatus.RETRYABLE
        assert isinstance(result.error, FileChangedError)
        assert store.completed == []

    def test_session_loss_during_parts_drops_checkpoint(
        self, store, checkpoints, make_file, make_uploader
    ):
        path = make_file(3 * MIB)
        uploader = make_uploader(path)
        uploader.validate()
        uploader.plan_multipart()
        store.sessions.clear()

        result = uploader.upload_parts()

        assert result.status is StepStatus.RETRYABLE
        assert isinstance(result.error, SessionNotFoundError)
        assert not checkpoint_path(checkpoints, path).exists()
