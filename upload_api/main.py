# upload_api/main.py
import os, uuid
import redis as redislib
from typing import Optional, Dict, Any
from fastapi import FastAPI, Request, HTTPException, Depends, File, Response, UploadFile
from fastapi.responses import JSONResponse

from ingest.config import IngestConfig
from ingest.errors import IngestError
from ingest.jobs import IncomingUpload, UploadPipeline
from ingest.media import FFmpegTool
from ingest.storage import Publisher

from .auth import AuthUser, get_current_user
from .videos import InMemoryVideoStore, RedisVideoStore, Video

APP_ENV = os.getenv("APP_ENV", "dev")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
VIDEO_STORE = os.getenv("VIDEO_STORE", "redis")

# multipart 外框的額外位元組
FORM_OVERHEAD = 1024 * 1024

CONFIG = IngestConfig.from_env()

app = FastAPI()
origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if origins_env:
    allow_list = [o.strip() for o in origins_env.split(",") if o.strip()]
else:
    allow_list = []  # 同源前綴路由時可留空

if allow_list:
    from fastapi.middleware.cors import CORSMiddleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

if VIDEO_STORE == "memory":
    video_store = InMemoryVideoStore()
else:
    video_store = RedisVideoStore(redislib.from_url(REDIS_URL))

pipeline = UploadPipeline(
    CONFIG,
    media=FFmpegTool(CONFIG.ffmpeg_bin, CONFIG.ffprobe_bin, timeout=CONFIG.tool_timeout),
    publisher=Publisher.from_config(CONFIG),
    videos=video_store,
)


def get_video_store():
    return video_store

def get_pipeline() -> UploadPipeline:
    return pipeline


def parse_video_id(video_id: str) -> str:
    try:
        return str(uuid.UUID(video_id))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid ID")

def load_own_video(store, video_id: str, user: AuthUser) -> Video:
    video = store.get_video(parse_video_id(video_id))
    if video is None:
        raise HTTPException(status_code=404, detail="Couldn't find video")
    if video.user_id != user.sub:
        raise HTTPException(status_code=403, detail="forbidden")
    return video


@app.exception_handler(IngestError)
async def ingest_error_handler(request: Request, exc: IngestError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# 超過上限的請求在讀 form 之前就擋掉
@app.middleware("http")
async def limit_upload_size(request: Request, call_next):
    if request.method == "POST" and request.url.path.startswith("/api/video_upload/"):
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > CONFIG.max_upload_bytes + FORM_OVERHEAD:
            return JSONResponse(status_code=400, content={"detail": f"upload exceeds {CONFIG.max_upload_bytes} bytes"})
    return await call_next(request)


# ---------- Endpoints ----------
@app.get("/healthz")
@app.get("/health")
def health(): return {"ok": True}

@app.get("/me")
def me(user: AuthUser = Depends(get_current_user)):
    return {"sub": user.sub, "email": user.email, "name": user.name}

@app.post("/api/videos", status_code=201)
def create_video(payload: Dict[str, Any], user: AuthUser = Depends(get_current_user), store=Depends(get_video_store)):
    title = (payload.get("title") or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="title required")
    try:
        video = store.create_video(user.sub, title, (payload.get("description") or "").strip())
    except IngestError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return video.to_dict()

@app.get("/api/videos")
def list_videos(user: AuthUser = Depends(get_current_user), store=Depends(get_video_store)):
    return {"items": [v.to_dict() for v in store.list_videos(user.sub)]}

@app.get("/api/videos/{video_id}")
def get_video(video_id: str, user: AuthUser = Depends(get_current_user), store=Depends(get_video_store)):
    return load_own_video(store, video_id, user).to_dict()

@app.delete("/api/videos/{video_id}")
def delete_video(video_id: str, user: AuthUser = Depends(get_current_user), store=Depends(get_video_store)):
    video = load_own_video(store, video_id, user)
    try:
        store.delete_video(video.id)
    except IngestError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=204)

@app.post("/api/video_upload/{video_id}")
def upload_video(
    video_id: str,
    video: Optional[UploadFile] = File(None),
    user: AuthUser = Depends(get_current_user),
    pipeline: UploadPipeline = Depends(get_pipeline),
):
    """
    上傳影片：ffprobe 判斷寬高比 → ffmpeg faststart → S3 → 更新 videoUrl。
    同步 endpoint，FastAPI 會放到 threadpool 執行，子行程不會卡住 event loop。
    """
    vid = parse_video_id(video_id)
    upload = None
    if video is not None:
        upload = IncomingUpload(content_type=video.content_type, stream=video.file, size=getattr(video, "size", None))
    try:
        updated = pipeline.run(vid, user.sub, upload)
    except IngestError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        print(f"[error] upload_video unexpected: {e}")
        raise HTTPException(status_code=500, detail=f"unexpected: {e}")
    finally:
        if video is not None:
            video.file.close()
    return updated.to_dict()


def serve():
    import uvicorn
    uvicorn.run(
        "upload_api.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=APP_ENV == "dev",
    )
