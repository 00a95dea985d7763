# ingest/jobs.py
import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, BinaryIO, Optional, Protocol

from .config import IngestConfig
from .errors import (
    Forbidden, IngestError, MissingUpload, NotFound, PersistenceError,
    UnsupportedMediaType,
)
from .media import MediaTool, classify_aspect
from .staging import UploadSession, stage
from .storage import Publisher, derive_key, extension_for, playback_url

ACCEPTED_MEDIA_TYPE = "video/mp4"


class PipelineState(str, Enum):
    AUTHORIZING     = "Authorizing"
    VALIDATING      = "Validating"
    STAGING         = "Staging"
    PROBING         = "Probing"
    REMUXING        = "Remuxing"
    PUBLISHING      = "Publishing"
    RECORD_UPDATING = "RecordUpdating"
    DONE            = "Done"
    FAILED          = "Failed"


class VideoStore(Protocol):
    def get_video(self, video_id: str) -> Optional[Any]: ...
    def update_video(self, video: Any) -> None: ...


@dataclass
class IncomingUpload:
    content_type: Optional[str]
    stream: BinaryIO
    size: Optional[int] = None


def parse_media_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


class UploadPipeline:
    """
    上傳處理流程：
    Authorizing → Validating → Staging → Probing → Remuxing → Publishing → RecordUpdating → Done
    任何一步失敗都進 Failed，暫存檔全部刪掉，影片紀錄不動，原例外直接往上丟。
    """

    def __init__(self, config: IngestConfig, media: MediaTool, publisher: Publisher, videos: VideoStore):
        self.config = config
        self.media = media
        self.publisher = publisher
        self.videos = videos

    def run(self, video_id: str, user_id: str, upload: Optional[IncomingUpload]):
        with UploadSession(video_id=video_id, user_id=user_id) as session:
            try:
                return self._run(session, upload)
            except Exception as e:
                failed_in = session.state
                self._enter(session, PipelineState.FAILED)
                kind = type(e).__name__ if isinstance(e, IngestError) else f"unexpected {type(e).__name__}"
                session.log(f"[pipeline] failed in {failed_in} ({kind}): {e}")
                raise

    def _enter(self, session: UploadSession, state: PipelineState):
        session.state = state.value
        session.log(f"[state] video={session.video_id} → {state.value}")

    def _run(self, session: UploadSession, upload: Optional[IncomingUpload]):
        cfg = self.config

        # 1) 權限：先確認影片存在且屬於本人，之前不碰任何檔案
        self._enter(session, PipelineState.AUTHORIZING)
        video = self.videos.get_video(session.video_id)
        if video is None:
            raise NotFound("Couldn't find video")
        if video.user_id != session.user_id:
            raise Forbidden("You are not authorized to upload this video")

        # 2) 只收 video/mp4
        self._enter(session, PipelineState.VALIDATING)
        if upload is None:
            raise MissingUpload("Missing video file")
        media_type = parse_media_type(upload.content_type)
        if media_type != ACCEPTED_MEDIA_TYPE:
            raise UnsupportedMediaType(f"Invalid media type {upload.content_type!r}, expected {ACCEPTED_MEDIA_TYPE}")
        session.content_type = media_type

        # 3) 落地暫存檔
        self._enter(session, PipelineState.STAGING)
        session.raw_path = session.track(
            stage(upload.stream, cfg.scratch_dir, cfg.max_upload_bytes, expected_size=upload.size)
        )
        session.log(f"[stage] {session.raw_path}")

        # 4) ffprobe → 寬高比分類
        self._enter(session, PipelineState.PROBING)
        meta = self.media.probe(session.raw_path)
        session.category = classify_aspect(meta.width, meta.height).value
        session.log(f"[probe] {meta.width}x{meta.height} → {session.category}")

        # 5) faststart remux（不重新編碼）
        self._enter(session, PipelineState.REMUXING)
        session.processed_path = session.track(self.media.remux(session.raw_path))

        # 6) 上傳 S3
        self._enter(session, PipelineState.PUBLISHING)
        session.key = derive_key(session.category, extension_for(session.content_type))
        self.publisher.publish(session.processed_path, session.key, session.content_type)

        # 7) 上傳成功後才更新紀錄，其他欄位原封不動
        self._enter(session, PipelineState.RECORD_UPDATING)
        url = playback_url(cfg, session.key)
        written = dataclasses.replace(video, video_url=url)
        try:
            self.videos.update_video(written)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Couldn't update video: {e}") from e

        # 紀錄已經寫入；讀回失敗就回傳剛寫的內容，不再算失敗
        try:
            updated = self.videos.get_video(session.video_id)
        except Exception as e:
            session.log(f"[pipeline] read back video {session.video_id} failed: {e}")
            updated = None
        if updated is None:
            updated = written

        self._enter(session, PipelineState.DONE)
        session.log(f"[pipeline] uploaded video {session.video_id} with key {session.key}")
        return updated
