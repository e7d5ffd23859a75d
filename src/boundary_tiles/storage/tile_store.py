"""
Tile Stores

Write-only blob destinations for generated tiles and boundary metadata.
A store is constructed explicitly from a ``StorageConfig`` and handed to
the pipeline, so every worker owns its own client.

Supported backends:
- gcs: Google Cloud Storage / Firebase Storage buckets
- s3: AWS S3 and S3-compatible object storage
- local: a directory tree on disk
"""

import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError
from google.api_core.exceptions import NotFound
from google.cloud import storage as gcs

from ..utils.config import StorageConfig
from ..utils.exceptions import StorageInitializationError, TileUploadError


DELETE_BATCH_SIZE = 100


class TileStore(ABC):
    """Interface shared by all tile destinations."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self.logger = structlog.get_logger(
            store_type=self.__class__.__name__,
            backend=config.backend
        )

    @abstractmethod
    def save(
        self,
        key: str,
        data: bytes,
        content_type: str,
        content_encoding: Optional[str] = None
    ) -> None:
        """
        Write an object, overwriting any existing object with the same key.

        Raises:
            TileUploadError: If the destination rejects the write
        """
        pass

    @abstractmethod
    def list_keys(self, prefix: str) -> List[str]:
        """List object keys under a prefix."""
        pass

    @abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under a prefix and return the number deleted."""
        pass


class GCSTileStore(TileStore):
    """Google Cloud Storage (Firebase Storage) destination."""

    def __init__(self, config: StorageConfig, client: Optional[gcs.Client] = None):
        super().__init__(config)
        try:
            if client is None:
                if config.credentials:
                    client = gcs.Client.from_service_account_info(
                        config.credentials,
                        project=config.credentials.get("project_id")
                    )
                else:
                    client = gcs.Client()
            self.client = client
            self.bucket = client.bucket(config.bucket)
        except Exception as e:
            self.logger.error("Failed to initialize storage client", error=str(e))
            raise StorageInitializationError(
                f"Could not initialize gcs bucket {config.bucket}: {e}"
            ) from e

        self.logger.info("Storage bucket initialized", bucket=config.bucket)

    def save(self, key, data, content_type, content_encoding=None):
        try:
            blob = self.bucket.blob(key)
            if content_encoding:
                blob.content_encoding = content_encoding
            blob.upload_from_string(data, content_type=content_type)
        except Exception as e:
            raise TileUploadError(key, e) from e

    def list_keys(self, prefix):
        return [blob.name for blob in self.client.list_blobs(self.bucket, prefix=prefix)]

    def delete_prefix(self, prefix):
        blobs = list(self.client.list_blobs(self.bucket, prefix=prefix))
        self.logger.info("Found files to delete", prefix=prefix, count=len(blobs))

        deleted = 0
        for start in range(0, len(blobs), DELETE_BATCH_SIZE):
            for blob in blobs[start:start + DELETE_BATCH_SIZE]:
                try:
                    blob.delete()
                    deleted += 1
                except NotFound:
                    continue
            self.logger.info(
                "Deleted batch",
                deleted=min(start + DELETE_BATCH_SIZE, len(blobs)),
                total=len(blobs)
            )
        return deleted


class S3TileStore(TileStore):
    """AWS S3 (or S3-compatible) destination."""

    def __init__(self, config: StorageConfig, client=None):
        super().__init__(config)
        try:
            self.s3_client = client or boto3.client(
                's3',
                region_name=config.region,
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                endpoint_url=config.endpoint_url
            )
        except (BotoCoreError, ValueError) as e:
            self.logger.error("Failed to initialize S3 client", error=str(e))
            raise StorageInitializationError(f"Could not initialize S3 client: {e}") from e

        self.bucket = config.bucket
        self.logger.info("S3 client initialized", bucket=self.bucket)

    def save(self, key, data, content_type, content_encoding=None):
        params = {
            'Bucket': self.bucket,
            'Key': key,
            'Body': data,
            'ContentType': content_type,
        }
        if content_encoding:
            params['ContentEncoding'] = content_encoding

        try:
            self.s3_client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            raise TileUploadError(key, e) from e

    def list_keys(self, prefix):
        keys = []
        paginator = self.s3_client.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj['Key'] for obj in page.get('Contents', []))
        return keys

    def delete_prefix(self, prefix):
        keys = self.list_keys(prefix)
        self.logger.info("Found files to delete", prefix=prefix, count=len(keys))

        deleted = 0
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            response = self.s3_client.delete_objects(
                Bucket=self.bucket,
                Delete={'Objects': [{'Key': key} for key in batch], 'Quiet': True}
            )

            errors = [
                error for error in response.get('Errors', [])
                if error.get('Code') != 'NoSuchKey'
            ]
            if errors:
                raise RuntimeError(
                    f"Failed to delete {len(errors)} objects under {prefix}: "
                    f"{errors[0].get('Key')}: {errors[0].get('Message')}"
                )

            deleted += len(batch)
            self.logger.info("Deleted batch", deleted=deleted, total=len(keys))
        return deleted


class LocalTileStore(TileStore):
    """Writes objects to a local directory, keyed by relative path."""

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        self.root = Path(config.local_root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageInitializationError(
                f"Could not create output directory {self.root}: {e}"
            ) from e

    def save(self, key, data, content_type, content_encoding=None):
        path = self.root / key
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise TileUploadError(key, e) from e

    def list_keys(self, prefix):
        return sorted(
            path.relative_to(self.root).as_posix()
            for path in self.root.rglob('*')
            if path.is_file() and path.relative_to(self.root).as_posix().startswith(prefix)
        )

    def delete_prefix(self, prefix):
        keys = self.list_keys(prefix)
        for key in keys:
            (self.root / key).unlink(missing_ok=True)

        # Remove directories left empty under the prefix
        prefix_dir = self.root / prefix
        if prefix_dir.is_dir() and not any(p.is_file() for p in prefix_dir.rglob('*')):
            shutil.rmtree(prefix_dir)

        self.logger.info("Deleted local files", prefix=prefix, count=len(keys))
        return len(keys)


def create_tile_store(config: StorageConfig) -> TileStore:
    """Create the tile store for the configured backend."""
    if config.backend == "gcs":
        return GCSTileStore(config)
    if config.backend == "s3":
        return S3TileStore(config)
    if config.backend == "local":
        return LocalTileStore(config)
    raise StorageInitializationError(f"Unsupported storage backend: {config.backend}")
