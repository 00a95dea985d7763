# ingest/config.py
import os, tempfile
from dataclasses import dataclass
from typing import Optional

MAX_UPLOAD_BYTES = 1 << 30  # 1 GiB


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return v.strip()


@dataclass(frozen=True)
class IngestConfig:
    bucket: str = "videos"
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None        # MinIO 等自架端點；None = AWS
    public_endpoint: Optional[str] = None     # 瀏覽器可達的 S3 位址
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    distribution: Optional[str] = None        # CloudFront 網域，優先用於播放網址
    create_bucket: bool = False
    scratch_dir: str = tempfile.gettempdir()
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    tool_timeout: float = 600.0

    @classmethod
    def from_env(cls) -> "IngestConfig":
        return cls(
            bucket=_env("S3_BUCKET_VIDEOS", "videos"),
            region=_env("S3_REGION", "us-east-1"),
            endpoint_url=_env("S3_ENDPOINT"),
            public_endpoint=_env("S3_PUBLIC_ENDPOINT"),
            access_key=_env("S3_ACCESS_KEY"),
            secret_key=_env("S3_SECRET_KEY"),
            distribution=_env("S3_CF_DISTRIBUTION"),
            create_bucket=_env("S3_CREATE_BUCKET", "0") == "1",
            scratch_dir=_env("UPLOAD_TMP_DIR", tempfile.gettempdir()),
            max_upload_bytes=int(_env("MAX_UPLOAD_BYTES", str(MAX_UPLOAD_BYTES))),
            ffmpeg_bin=_env("FFMPEG_BIN", "ffmpeg"),
            ffprobe_bin=_env("FFPROBE_BIN", "ffprobe"),
            tool_timeout=float(_env("FFMPEG_TIMEOUT", "600")),
        )
