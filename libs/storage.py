"""
Storage abstraction layer for local and S3 storage.

Checkpoints, the weekly output and coin images all go through this module so
a harvest can run on a laptop (local filesystem) or in AWS (S3) unchanged.

Environment detection:
- Local: When AWS_EXECUTION_ENV is not set
- AWS Lambda: When AWS_EXECUTION_ENV is set

Local writes of JSON are atomic: the document is written to a temp file in the
target directory and renamed over the target, so a crash mid-write leaves the
previous version intact. S3 put_object replaces an object atomically.

Usage:
    from libs.storage import Storage

    storage = Storage(root='data')

    checkpoint = storage.read_json('scraping_progress.json')
    storage.write_json(checkpoint, 'scraping_progress.json')
    storage.delete('scraping_progress.json')
"""

import os
import json
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional


class Storage:
    """Unified storage interface for local and S3."""

    def __init__(self, root: Optional[str] = None, bucket_name: Optional[str] = None):
        """
        Initialize storage.

        Args:
            root: Local root directory (default: DATA_ROOT env var or cwd)
            bucket_name: S3 bucket name (only used in AWS environment)
        """
        self.is_aws = os.getenv('AWS_EXECUTION_ENV') is not None
        self.bucket_name = bucket_name or os.getenv('S3_BUCKET', 'crypto-weekly-rankings')

        if self.is_aws:
            import boto3
            self.s3_client = boto3.client('s3')
        else:
            self.s3_client = None
            self.local_root = Path(root or os.getenv('DATA_ROOT', '.'))

    def _get_local_path(self, path: str) -> Path:
        """Convert path to local filesystem path."""
        path = path.lstrip('/')
        return self.local_root / path

    def _get_s3_key(self, path: str) -> str:
        """Convert path to S3 key."""
        return path.lstrip('/')

    def exists(self, path: str) -> bool:
        """
        Check if file exists.

        Args:
            path: File path (e.g., 'data/scraping_progress.json')

        Returns:
            True if file exists, False otherwise
        """
        if self.is_aws:
            from botocore.exceptions import ClientError
            try:
                self.s3_client.head_object(
                    Bucket=self.bucket_name,
                    Key=self._get_s3_key(path)
                )
                return True
            except ClientError:
                return False
        else:
            return self._get_local_path(path).exists()

    def read_json(self, path: str) -> Dict[str, Any]:
        """
        Read JSON file.

        Args:
            path: File path (e.g., 'data/scraping_progress.json')

        Returns:
            Dictionary
        """
        if self.is_aws:
            key = self._get_s3_key(path)
            obj = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return json.loads(obj['Body'].read().decode('utf-8'))
        else:
            with open(self._get_local_path(path), 'r') as f:
                return json.load(f)

    def write_json(self, data: Dict[str, Any], path: str) -> None:
        """
        Write JSON file, replacing any previous version atomically.

        Args:
            data: Dictionary to write
            path: File path (e.g., 'data/weekly_crypto_data.json')
        """
        body = json.dumps(data, indent=2)

        if self.is_aws:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=self._get_s3_key(path),
                Body=body.encode('utf-8'),
                ContentType='application/json'
            )
        else:
            local_path = self._get_local_path(path)
            local_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=local_path.parent, prefix=f".{local_path.name}.", suffix='.tmp'
            )
            try:
                with os.fdopen(fd, 'w') as f:
                    f.write(body)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, local_path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

    def write_bytes(self, content: bytes, path: str) -> None:
        """
        Write binary file.

        Args:
            content: Raw bytes (e.g., a PNG image)
            path: File path
        """
        if self.is_aws:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=self._get_s3_key(path),
                Body=content
            )
        else:
            local_path = self._get_local_path(path)
            local_path.parent.mkdir(parents=True, exist_ok=True)
            with open(local_path, 'wb') as f:
                f.write(content)

    def delete(self, path: str) -> None:
        """
        Delete file.

        Args:
            path: File path to delete
        """
        if self.is_aws:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=self._get_s3_key(path)
            )
        else:
            local_path = self._get_local_path(path)
            if local_path.exists():
                local_path.unlink()
