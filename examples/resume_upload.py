#!/usr/bin/env python3
"""
End-to-end check of checkpoint-based resume.

This script creates a file, starts uploading it, cuts the connection after a
few parts, then uploads again and confirms that only the missing parts were
sent.

Setup:
    export OSS_ACCESS_KEY_ID='your_access_key_id'
    export OSS_ACCESS_KEY_SECRET='your_access_key_secret'
    export OSS_BUCKET='your_bucket'
    export OSS_REGION='oss-cn-hangzhou'

    python examples/resume_upload.py

Optional environment variables:
    TEST_FILE_SIZE_MB - Size of test file in MB (default: 64)
    TEST_INTERRUPT_AFTER - Parts to upload before the simulated failure (default: 3)
"""

import os
import sys
import tempfile
import time
from datetime import datetime

from oss_uploader import OssUploader, ObjectStore, TransportError, UploadFailedError, UploadOptions

CHUNK_SIZE = 8 * 1024 * 1024


class InterruptingStore(ObjectStore):
    """Delegates to a real store but fails every part after the first ``limit``."""

    def __init__(self, inner, limit):
        self.inner = inner
        self.limit = limit
        self.parts_sent = 0

    def object_url(self, key):
        return self.inner.object_url(key)

    def simple_put(self, key, path, content_type):
        return self.inner.simple_put(key, path, content_type)

    def initiate_multipart(self, key, content_type):
        return self.inner.initiate_multipart(key, content_type)

    def upload_part(self, key, session_id, part_number, data):
        if self.limit is not None and self.parts_sent >= self.limit:
            raise TransportError("simulated connection drop", operation="upload_part")
        etag = self.inner.upload_part(key, session_id, part_number, data)
        self.parts_sent += 1
        return etag

    def complete_multipart(self, key, session_id, parts):
        return self.inner.complete_multipart(key, session_id, parts)

    def abort_multipart(self, key, session_id):
        self.inner.abort_multipart(key, session_id)


def create_test_file(size_mb):
    with tempfile.NamedTemporaryFile(delete=False, suffix=".bin") as f:
        for _ in range(size_mb):
            f.write(os.urandom(1024 * 1024))
        return f.name


def main():
    size_mb = int(os.getenv("TEST_FILE_SIZE_MB", "64"))
    interrupt_after = int(os.getenv("TEST_INTERRUPT_AFTER", "3"))

    print(f"\n{'=' * 60}")
    print("Resume Upload E2E Test")
    print(f"{'=' * 60}")

    real_store = OssUploader().store
    file_path = create_test_file(size_mb)
    object_key = f"test/resume_{size_mb}mb_{datetime.now().strftime('%Y%m%d_%H%M%S')}.bin"
    print(f"Test file: {file_path} ({size_mb} MB)")
    print(f"Object key: {object_key}")

    try:
        # First run: stop after a few parts
        flaky = InterruptingStore(real_store, interrupt_after)
        options = UploadOptions(
            object_key=object_key, chunk_size=CHUNK_SIZE, max_retries=0, part_retries=0
        )
        try:
            OssUploader(store=flaky).upload_file(file_path, options)
            print("✗ Upload was expected to fail")
            return 1
        except UploadFailedError as e:
            print(f"✓ First run interrupted after {flaky.parts_sent} parts: {e.root_cause}")

        # Second run: resume
        counting = InterruptingStore(real_store, None)
        start_time = time.time()
        result = OssUploader(store=counting).upload_file(
            file_path, UploadOptions(object_key=object_key, chunk_size=CHUNK_SIZE)
        )
        elapsed = time.time() - start_time

        print(f"✓ Second run finished in {elapsed:.1f}s")
        print(f"  Resumed: {result.resumed} ({result.existing_parts} parts reused)")
        print(f"  Parts sent this run: {counting.parts_sent}/{result.total_parts}")
        print(f"  URL: {result.url}")

        if not result.resumed or counting.parts_sent != result.total_parts - interrupt_after:
            print("✗ Resume did not skip the uploaded parts")
            return 1
        print("\n✅ Resume test passed")
        return 0
    finally:
        os.remove(file_path)


if __name__ == "__main__":
    sys.exit(main())
