"""Tests for the big-bucket cleanup script."""

from __future__ import annotations

import os
import stat
from pathlib import Path

from stackops.destroy.cleanup_script import create_cleanup_buckets_script, get_delete_bucket_line


def test_delete_bucket_line() -> None:
    assert get_delete_bucket_line("logs") == 'aws s3 rb "s3://logs" --force'
    assert get_delete_bucket_line("logs", profile="prod") == 'aws --profile prod s3 rb "s3://logs" --force'


def test_script_is_executable_with_one_line_per_bucket(tmp_path: Path) -> None:
    path = create_cleanup_buckets_script(["logs", "objects"], str(tmp_path), profile="prod")

    assert path == tmp_path / "cleanup-buckets.sh"
    assert path.read_text() == (
        "#!/bin/bash\n\n"
        'aws --profile prod s3 rb "s3://logs" --force\n'
        'aws --profile prod s3 rb "s3://objects" --force\n'
    )
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o755


def test_existing_script_is_not_overwritten(tmp_path: Path) -> None:
    first = create_cleanup_buckets_script(["logs"], str(tmp_path))

    second = create_cleanup_buckets_script(["objects"], str(tmp_path), clock=lambda: 1700000000.123)

    assert second == tmp_path / "cleanup-buckets-1700000000123.sh"
    assert "s3://logs" in first.read_text()
    assert "s3://objects" in second.read_text()
