# upload_api/videos.py
import json, threading, uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from redis.exceptions import RedisError

from ingest.errors import PersistenceError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Video:
    id: str
    user_id: str
    title: str
    description: str = ""
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "videoUrl": self.video_url,
            "thumbnailUrl": self.thumbnail_url,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_json(cls, raw) -> "Video":
        return cls(**json.loads(raw))


class InMemoryVideoStore:
    def __init__(self):
        self._videos: Dict[str, Video] = {}
        self._lock = threading.Lock()

    def create_video(self, user_id: str, title: str, description: str = "") -> Video:
        v = Video(id=str(uuid.uuid4()), user_id=user_id, title=title, description=description)
        with self._lock:
            self._videos[v.id] = v
        return v

    def get_video(self, video_id: str) -> Optional[Video]:
        with self._lock:
            return self._videos.get(video_id)

    def update_video(self, video: Video) -> None:
        with self._lock:
            if video.id not in self._videos:
                raise PersistenceError(f"video {video.id} does not exist")
            self._videos[video.id] = _touch(video)

    def list_videos(self, user_id: str) -> List[Video]:
        with self._lock:
            items = [v for v in self._videos.values() if v.user_id == user_id]
        return sorted(items, key=lambda v: v.created_at, reverse=True)

    def delete_video(self, video_id: str) -> None:
        with self._lock:
            self._videos.pop(video_id, None)


class RedisVideoStore:
    """
    videos:{id}               → Video JSON
    users:{user_id}:videos    → 該使用者的 video id set
    """

    def __init__(self, redis_conn, prefix: str = ""):
        self.r = redis_conn
        self.prefix = prefix

    def _vkey(self, video_id: str) -> str:
        return f"{self.prefix}videos:{video_id}"

    def _ukey(self, user_id: str) -> str:
        return f"{self.prefix}users:{user_id}:videos"

    def create_video(self, user_id: str, title: str, description: str = "") -> Video:
        v = Video(id=str(uuid.uuid4()), user_id=user_id, title=title, description=description)
        try:
            self.r.set(self._vkey(v.id), json.dumps(asdict(v)))
            self.r.sadd(self._ukey(user_id), v.id)
        except RedisError as e:
            raise PersistenceError(f"create video failed: {e}") from e
        return v

    def get_video(self, video_id: str) -> Optional[Video]:
        try:
            raw = self.r.get(self._vkey(video_id))
        except RedisError as e:
            raise PersistenceError(f"get video failed: {e}") from e
        return Video.from_json(raw) if raw else None

    def update_video(self, video: Video) -> None:
        try:
            # xx=True：只更新已存在的紀錄
            ok = self.r.set(self._vkey(video.id), json.dumps(asdict(_touch(video))), xx=True)
        except RedisError as e:
            raise PersistenceError(f"update video failed: {e}") from e
        if not ok:
            raise PersistenceError(f"video {video.id} does not exist")

    def list_videos(self, user_id: str) -> List[Video]:
        try:
            members = self.r.smembers(self._ukey(user_id)) or []
        except RedisError as e:
            raise PersistenceError(f"list videos failed: {e}") from e
        items = []
        for vid in members:
            if isinstance(vid, bytes):
                vid = vid.decode()
            v = self.get_video(vid)
            if v is not None:
                items.append(v)
        return sorted(items, key=lambda v: v.created_at, reverse=True)

    def delete_video(self, video_id: str) -> None:
        v = self.get_video(video_id)
        if v is None:
            return
        try:
            self.r.delete(self._vkey(video_id))
            self.r.srem(self._ukey(v.user_id), video_id)
        except RedisError as e:
            raise PersistenceError(f"delete video failed: {e}") from e


def _touch(video: Video) -> Video:
    return replace(video, updated_at=_now())
