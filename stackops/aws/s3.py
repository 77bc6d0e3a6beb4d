"""S3 bucket operations."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import tempfile
from typing import Any, Optional
from urllib.parse import urlparse

from botocore.exceptions import ClientError

from ..errors import InvalidEnvironment, InvalidInput, NotFound, ServerError
from .client import error_code, is_not_found

logger = logging.getLogger(__name__)

S3_PIT_RESTORE = "s3-pit-restore"
S3_PIT_RESTORE_URL = "https://github.com/madisoft/s3-pit-restore"

# Expires everything (current and noncurrent versions) within a day
EXPIRE_ALL_LIFECYCLE = {
    "Rules": [
        {
            "ID": "expires-in-1-day",
            "Status": "Enabled",
            "Filter": {"Prefix": ""},
            "Expiration": {"Days": 1},
            "NoncurrentVersionExpiration": {"NoncurrentDays": 1},
        }
    ]
}


def validate_bucket_name(name: str) -> None:
    if len(name) < 3 or len(name) > 63:
        raise InvalidInput(f"bucket name must be between 3 and 63 characters long: {name}")


def assert_restore_tool_installed() -> None:
    if shutil.which(S3_PIT_RESTORE) is None:
        raise InvalidEnvironment(f"please install this tool first: {S3_PIT_RESTORE_URL}")


class BucketClient:
    """S3 wrapper.

    The bucket-settings APIs do not tolerate concurrent configuration changes
    on one bucket, so settings are always copied serially.
    """

    def __init__(self, client: Any, max_empty_rounds: int = 10) -> None:
        self.client = client
        self.max_empty_rounds = max_empty_rounds

    def does_bucket_exist(self, bucket: str) -> bool:
        try:
            self.client.head_bucket(Bucket=bucket)
        except ClientError as e:
            if is_not_found(e):
                return False
            raise
        return True

    def assert_bucket_exists(self, bucket: str) -> None:
        if not self.does_bucket_exist(bucket):
            raise InvalidInput(f"bucket does not exist: {bucket}")

    def is_bucket_empty(self, bucket: str) -> bool:
        response = self.client.list_objects_v2(Bucket=bucket, MaxKeys=1)
        return not response.get("Contents")

    def assert_bucket_is_empty(self, bucket: str) -> None:
        if not self.is_bucket_empty(bucket):
            raise InvalidInput(f"expected bucket to be empty: {bucket}")

    def create_bucket(self, bucket: str) -> None:
        validate_bucket_name(bucket)
        params: dict[str, Any] = {"Bucket": bucket}
        region = getattr(getattr(self.client, "meta", None), "region_name", None)
        if region and region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}

        try:
            self.client.create_bucket(**params)
        except ClientError as e:
            if error_code(e) == "InvalidBucketName":
                raise InvalidInput(f"invalid bucket name: {bucket}")
            raise

    def create_bucket_or_assert_empty(self, bucket: str) -> None:
        if self.does_bucket_exist(bucket):
            self.assert_bucket_is_empty(bucket)
        else:
            self.create_bucket(bucket)

    # Settings

    def get_bucket_encryption(self, bucket: str) -> dict:
        try:
            response = self.client.get_bucket_encryption(Bucket=bucket)
        except ClientError as e:
            if error_code(e) == "ServerSideEncryptionConfigurationNotFoundError":
                raise NotFound(f"encryption configuration for bucket: {bucket}")
            raise
        return response["ServerSideEncryptionConfiguration"]

    def set_bucket_encryption(self, bucket: str, encryption: dict) -> None:
        self.client.put_bucket_encryption(Bucket=bucket, ServerSideEncryptionConfiguration=encryption)

    def get_bucket_versioning(self, bucket: str) -> dict:
        response = self.client.get_bucket_versioning(Bucket=bucket)
        return {key: response[key] for key in ("Status", "MFADelete") if key in response}

    def set_bucket_versioning(self, bucket: str, versioning: dict) -> None:
        self.client.put_bucket_versioning(Bucket=bucket, VersioningConfiguration=versioning)

    def get_bucket_lifecycle(self, bucket: str) -> dict:
        try:
            response = self.client.get_bucket_lifecycle_configuration(Bucket=bucket)
        except ClientError as e:
            if error_code(e) == "NoSuchLifecycleConfiguration":
                raise NotFound(f"lifecycle configuration for bucket: {bucket}")
            raise
        return {"Rules": response.get("Rules", [])}

    def set_bucket_lifecycle(self, bucket: str, lifecycle: dict) -> None:
        self.client.put_bucket_lifecycle_configuration(Bucket=bucket, LifecycleConfiguration=lifecycle)

    def get_bucket_cors(self, bucket: str) -> dict:
        try:
            response = self.client.get_bucket_cors(Bucket=bucket)
        except ClientError as e:
            if error_code(e) == "NoSuchCORSConfiguration":
                raise NotFound(f"CORS configuration for bucket: {bucket}")
            raise
        return {"CORSRules": response.get("CORSRules", [])}

    def set_bucket_cors(self, bucket: str, cors: dict) -> None:
        self.client.put_bucket_cors(Bucket=bucket, CORSConfiguration=cors)

    def copy_bucket_settings(self, source: str, target: str) -> None:
        """Copy encryption, versioning, lifecycle and CORS settings, in series."""
        self.copy_bucket_encryption(source, target)
        self.copy_bucket_versioning(source, target)
        self.copy_bucket_lifecycle(source, target)
        self.copy_bucket_cors(source, target)

    def copy_bucket_encryption(self, source: str, target: str) -> None:
        try:
            encryption = self.get_bucket_encryption(source)
        except NotFound:
            return
        self.set_bucket_encryption(target, encryption)

    def copy_bucket_versioning(self, source: str, target: str) -> None:
        versioning = self.get_bucket_versioning(source)
        if versioning.get("Status"):
            self.set_bucket_versioning(target, versioning)

    def copy_bucket_lifecycle(self, source: str, target: str) -> None:
        try:
            lifecycle = self.get_bucket_lifecycle(source)
        except NotFound:
            return
        self.set_bucket_lifecycle(target, lifecycle)

    def copy_bucket_cors(self, source: str, target: str) -> None:
        try:
            cors = self.get_bucket_cors(source)
        except NotFound:
            return
        self.set_bucket_cors(target, cors)

    # Deletion

    def _delete_batch(self, bucket: str, objects: list[dict]) -> None:
        # delete_objects accepts at most 1000 keys per call
        for start in range(0, len(objects), 1000):
            batch = [
                {key: obj[key] for key in ("Key", "VersionId") if obj.get(key)}
                for obj in objects[start : start + 1000]
            ]
            response = self.client.delete_objects(Bucket=bucket, Delete={"Objects": batch, "Quiet": True})
            # Quiet mode only reports the keys it failed to delete
            errors = response.get("Errors") or []
            if errors:
                failed = ", ".join(f"{e.get('Key')} ({e.get('Code')})" for e in errors[:10])
                raise ServerError(f"failed to delete {len(errors)} object(s) from {bucket}: {failed}")

    def _empty_once(self, bucket: str) -> int:
        count = 0

        versions = self.client.list_object_versions(Bucket=bucket)
        if versions.get("Versions"):
            logger.info(f"Deleting {len(versions['Versions'])} object versions from {bucket}")
            self._delete_batch(bucket, versions["Versions"])
            count += len(versions["Versions"])

        markers = self.client.list_object_versions(Bucket=bucket).get("DeleteMarkers", [])
        if markers:
            logger.info(f"Deleting {len(markers)} delete markers from {bucket}")
            self._delete_batch(bucket, markers)
            count += len(markers)

        contents = self.client.list_objects_v2(Bucket=bucket).get("Contents", [])
        if contents:
            logger.info(f"Deleting {len(contents)} objects from {bucket}")
            self._delete_batch(bucket, contents)
            count += len(contents)

        return count

    def empty_bucket(self, bucket: str) -> None:
        """Delete all versions, delete markers and current objects until none remain.

        Missing buckets are treated as already empty.

        Raises:
            ServerError: If objects could not be deleted, or the bucket is
                still not empty after max_empty_rounds passes
        """
        try:
            for _ in range(self.max_empty_rounds):
                if not self._empty_once(bucket):
                    return
        except ClientError as e:
            if is_not_found(e):
                return
            raise
        raise ServerError(f"bucket {bucket} is still not empty after {self.max_empty_rounds} passes")

    def destroy_bucket(self, bucket: str) -> None:
        """Empty and delete a bucket.

        Raises:
            NotFound: If the bucket does not exist
        """
        self.empty_bucket(bucket)
        try:
            self.client.delete_bucket(Bucket=bucket)
        except ClientError as e:
            if is_not_found(e):
                raise NotFound(f"bucket not found: {bucket}")
            raise

    def mark_bucket_for_deletion(self, bucket: str) -> None:
        """Install a lifecycle policy that expires all objects within a day.

        Raises:
            NotFound: If the bucket does not exist
        """
        try:
            self.client.put_bucket_lifecycle_configuration(
                Bucket=bucket,
                LifecycleConfiguration=EXPIRE_ALL_LIFECYCLE,
            )
        except ClientError as e:
            if is_not_found(e):
                raise NotFound(f"bucket not found: {bucket}")
            raise

    # Restore

    def restore_bucket(self, source: str, dest: str, date: str, profile: Optional[str] = None) -> None:
        """Copy a bucket's contents as of a point in time into another bucket.

        Uses s3-pit-restore to materialize the objects locally, then syncs them
        to the destination bucket.

        Raises:
            InvalidEnvironment: If s3-pit-restore is not installed
            subprocess.CalledProcessError: If either tool fails
        """
        assert_restore_tool_installed()

        env = dict(os.environ)
        if profile:
            env["AWS_PROFILE"] = profile

        with tempfile.TemporaryDirectory(prefix=f"restore-{dest}-") as staging_dir:
            logger.debug(f"Restoring s3://{source} as of {date} into {staging_dir}")
            subprocess.run(
                [S3_PIT_RESTORE, "-b", source, "-d", staging_dir, "-t", date],
                env=env,
                check=True,
            )
            subprocess.run(["aws", "s3", "sync", staging_dir, f"s3://{dest}"], env=env, check=True)

    # Objects

    def get_object_body(self, bucket: str, key: str) -> str:
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if is_not_found(e) or error_code(e) == "NoSuchKey":
                raise NotFound(f"object not found: s3://{bucket}/{key}")
            raise
        return response["Body"].read().decode("utf-8")

    def put_json(self, bucket: str, key: str, data: Any) -> str:
        """Upload a JSON document.

        Returns:
            The object's https URL
        """
        self.client.put_object(
            Bucket=bucket,
            Key=key,
            Body=json.dumps(data).encode("utf-8"),
            ContentType="application/json",
        )
        return f"https://{bucket}.s3.amazonaws.com/{key}"


def parse_s3_url(url: str) -> tuple[str, str]:
    """Split an S3 object URL into (bucket, key).

    Accepts s3://bucket/key, virtual-hosted https://bucket.s3[.region].amazonaws.com/key
    and path-style https://s3[.region].amazonaws.com/bucket/key.

    Raises:
        InvalidInput: If the URL does not point at an S3 object
    """
    parsed = urlparse(url)
    path = parsed.path.lstrip("/")
    host = parsed.netloc

    if parsed.scheme == "s3" and host and path:
        return host, path

    if parsed.scheme == "https" and host.endswith(".amazonaws.com"):
        if host.startswith("s3.") or host.startswith("s3-"):
            bucket, _, key = path.partition("/")
            if bucket and key:
                return bucket, key
        elif ".s3." in host or ".s3-" in host:
            bucket = host.split(".s3", 1)[0]
            if path:
                return bucket, path

    raise InvalidInput(f"expected an S3 object URL, got: {url}")
