# ingest/storage.py
import secrets, threading
from pathlib import Path
from typing import Callable, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import IngestConfig
from .errors import PublishError

KEY_RANDOM_BYTES = 32

_EXTENSIONS = {
    "video/mp4": "mp4",
}


def extension_for(content_type: str) -> str:
    return _EXTENSIONS.get(content_type, "bin")


def derive_key(category: str, ext: str = "mp4") -> str:
    """{category}/{64 個 hex}.{ext}；跟 video id 無關，重傳同一支影片也會拿到新 key。"""
    encoded = secrets.token_bytes(KEY_RANDOM_BYTES).hex()
    return f"{category}/{encoded}.{ext}"


def playback_url(config: IngestConfig, key: str) -> str:
    if config.distribution:
        base = config.distribution.rstrip("/")
        if "://" not in base:
            base = f"https://{base}"
        return f"{base}/{key}"
    if config.public_endpoint:
        return f"{config.public_endpoint.rstrip('/')}/{config.bucket}/{key}"
    return f"https://{config.bucket}.s3.{config.region}.amazonaws.com/{key}"


#  S3 工具
def make_s3_client(config: IngestConfig):
    session = boto3.session.Session()
    kwargs = {}
    if config.endpoint_url:
        # 自架端點（MinIO）用 path-style
        kwargs["endpoint_url"] = config.endpoint_url
        kwargs["config"] = Config(signature_version="s3v4", s3={"addressing_style": "path"})
    else:
        kwargs["config"] = Config(signature_version="s3v4")
    return session.client(
        "s3",
        aws_access_key_id=config.access_key,
        aws_secret_access_key=config.secret_key,
        region_name=config.region,
        **kwargs,
    )


def _error_code(e: ClientError) -> str:
    return (e.response or {}).get("Error", {}).get("Code", "")


class Publisher:
    def __init__(self, s3, bucket: str, create_bucket: bool = False,
                 log: Callable[[str], None] = print):
        self.s3 = s3
        self.bucket = bucket
        self.create_bucket = create_bucket
        self._log = log
        self._bucket_ready = False
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: IngestConfig, s3=None) -> "Publisher":
        return cls(s3 or make_s3_client(config), config.bucket, create_bucket=config.create_bucket)

    def ensure_bucket(self):
        # 網路呼叫不持鎖；同時第一次上傳頂多各查一次 head_bucket
        with self._lock:
            if self._bucket_ready:
                return
        try:
            self.s3.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            code = _error_code(e)
            if self.create_bucket and code in ("404", "NoSuchBucket", "NotFound"):
                try:
                    self.s3.create_bucket(Bucket=self.bucket)
                except ClientError as ce:
                    # 另一個請求剛建好
                    if _error_code(ce) not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                        raise
                self._log(f"[init] created bucket {self.bucket}")
            else:
                self._log(f"[init] head_bucket {self.bucket} failed: {e}")
                raise
        with self._lock:
            self._bucket_ready = True

    def publish(self, local: Path, key: str, content_type: Optional[str] = None):
        args = {"ContentType": content_type} if content_type else {}
        try:
            self.ensure_bucket()
            self._log(f"[upload] {local} → s3://{self.bucket}/{key}")
            self.s3.upload_file(str(local), self.bucket, key, ExtraArgs=args)
        except ClientError as e:
            msg = (e.response or {}).get("Error", {}).get("Message", str(e))
            self._log(f"[upload:error] {e.response.get('Error', {})}")
            raise PublishError(f"S3 error: {msg}") from e
        except (BotoCoreError, S3UploadFailedError, OSError) as e:
            self._log(f"[upload:error] {e}")
            raise PublishError(f"upload failed: {e}") from e
