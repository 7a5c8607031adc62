#!/usr/bin/env python3
"""
Basic usage examples for OSS Uploader.

This script demonstrates the most common operations:
- Uploading a small file with a single put
- Uploading a large file in parts with progress reporting
- Inspecting pending checkpoints
- Error handling
"""

import os
import tempfile
from pathlib import Path

from oss_uploader import (
    ConfigurationError,
    OssUploader,
    UploadFailedError,
    UploadOptions,
)


def main():
    """Demonstrate basic OSS Uploader operations."""

    # Initialize API (requires OSS_ACCESS_KEY_ID, OSS_ACCESS_KEY_SECRET and OSS_BUCKET)
    try:
        api = OssUploader()
        print(f"✅ Using bucket {api.config.bucket} in {api.config.region}")
    except ConfigurationError as e:
        print(f"❌ {e}")
        return

    print("\n" + "=" * 50)
    print("BASIC OSS UPLOADER OPERATIONS")
    print("=" * 50)

    with tempfile.TemporaryDirectory() as temp_dir:
        # 1. Small file: one put request
        print("\n1. Uploading a small file...")
        small_file = Path(temp_dir) / "hello.txt"
        small_file.write_text("Hello from OSS Uploader!\n")
        try:
            result = api.upload_file(small_file, UploadOptions(prefix="examples/"))
            print(f"   ✅ Uploaded to {result.url}")
        except UploadFailedError as e:
            print(f"   ❌ Upload failed after {e.attempts} attempt(s): {e.root_cause}")
            return

        # 2. Large file: multipart with a checkpoint
        print("\n2. Uploading a 12 MB file in 5 MB parts...")
        large_file = Path(temp_dir) / "large.bin"
        large_file.write_bytes(os.urandom(12 * 1024 * 1024))

        def show_progress(percent):
            print(f"   Progress: {percent}%")

        options = UploadOptions(
            prefix="examples/",
            keep_original_name=True,
            chunk_size=5 * 1024 * 1024,
            max_retries=3,
        )
        try:
            result = api.upload_file(large_file, options, progress_callback=show_progress)
            print(f"   ✅ Uploaded {result.total_parts} parts to {result.object_key}")
            if result.resumed:
                print(f"   ℹ️  Resumed with {result.existing_parts} parts already uploaded")
        except UploadFailedError as e:
            print(f"   ❌ Upload failed: {e.root_cause}")
            print("   Run the script again to resume from the checkpoint")

        # 3. Pending uploads
        print("\n3. Pending checkpoints...")
        pending = api.list_checkpoints(options.checkpoint_dir)
        if not pending:
            print("   No pending uploads")
        for info in pending:
            print(
                f"   • {info.object_key}: {info.completed_parts}/{info.total_parts} parts "
                f"(id {info.checkpoint_id[:12]})"
            )

    print("\n✅ Basic operations completed!")


if __name__ == "__main__":
    main()
