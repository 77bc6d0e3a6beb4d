"""Shell script for deleting big buckets once S3 has emptied them."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

CLEANUP_SCRIPT_NAME = "cleanup-buckets.sh"


def get_delete_bucket_line(bucket: str, profile: Optional[str] = None) -> str:
    line = "aws "
    if profile:
        line += f"--profile {profile} "
    return line + f's3 rb "s3://{bucket}" --force'


def get_cleanup_script_path(directory: str, clock: Callable[[], float] = time.time) -> Path:
    """Pick a script path that does not overwrite an earlier script."""
    path = Path(directory) / CLEANUP_SCRIPT_NAME
    if path.exists():
        path = Path(directory) / f"cleanup-buckets-{int(clock() * 1000)}.sh"
    return path


def create_cleanup_buckets_script(
    buckets: Iterable[str],
    directory: str,
    profile: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> Path:
    """Write an executable script with one delete-bucket command per bucket.

    Returns:
        Path of the script
    """
    lines = [get_delete_bucket_line(bucket, profile) for bucket in buckets]
    body = "#!/bin/bash\n\n" + "\n".join(lines) + "\n"

    path = get_cleanup_script_path(directory, clock=clock)
    path.write_text(body)
    os.chmod(path, 0o755)
    return path
