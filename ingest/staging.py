# ingest/staging.py
import os, secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, List, Optional

from .errors import PayloadTooLarge, StagingError

CHUNK_SIZE = 1024 * 1024  # 1 MB
MAX_LOG_LINES = 200


def stage(stream: BinaryIO, scratch_dir: str, max_bytes: int,
          expected_size: Optional[int] = None) -> Path:
    """把上傳串流落地成暫存檔，檔名只由隨機值產生；失敗時不留下半個檔案。"""
    d = Path(scratch_dir)
    try:
        d.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StagingError(f"cannot create scratch dir {d}: {e}") from e

    path = (d / f"upload-{secrets.token_hex(16)}.mp4").resolve()
    written = 0
    try:
        with path.open("xb") as f:
            while True:
                chunk = stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise PayloadTooLarge(f"upload exceeds {max_bytes} bytes")
                f.write(chunk)
    except PayloadTooLarge:
        unstage(path)
        raise
    except OSError as e:
        unstage(path)
        raise StagingError(f"write temp file failed: {e}") from e
    except Exception as e:
        # 例如串流已關閉 (ValueError)
        unstage(path)
        raise StagingError(f"read upload stream failed: {e}") from e
    except BaseException:
        unstage(path)
        raise

    if expected_size is not None and written < expected_size:
        unstage(path)
        raise StagingError(f"upload truncated: got {written} of {expected_size} bytes")
    return path


def unstage(path: Optional[Path]) -> None:
    if path is None:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


@dataclass
class UploadSession:
    """單一請求的暫存狀態；離開 with 區塊時刪掉所有登記過的檔案。"""
    video_id: str
    user_id: str
    content_type: Optional[str] = None
    raw_path: Optional[Path] = None
    processed_path: Optional[Path] = None
    category: Optional[str] = None
    key: Optional[str] = None
    state: str = "Authorizing"
    logs: List[str] = field(default_factory=list)
    _owned: List[Path] = field(default_factory=list, repr=False)

    def track(self, path: Path) -> Path:
        self._owned.append(path)
        return path

    def log(self, msg: str):
        self.logs.append(msg)
        self.logs = self.logs[-MAX_LOG_LINES:]
        print(msg, flush=True)

    def close(self):
        while self._owned:
            p = self._owned.pop()
            try:
                unstage(p)
            except OSError as e:
                self.log(f"[cleanup:error] {p}: {e}")
        self.raw_path = None
        self.processed_path = None

    def __enter__(self) -> "UploadSession":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
