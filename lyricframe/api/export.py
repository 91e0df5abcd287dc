"""Export session endpoints.

1. init: upload the audio track, get a session id
2. chunk: append a batch of JPEG frames (deduplicated by startFrame)
3. finalize: mux frames + audio, stream the MP4 back, clean up
"""

import asyncio
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, Header, Query, Request, UploadFile
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from lyricframe.config import get_settings
from lyricframe.exceptions import EncodeError, PayloadTooLargeError, ValidationError
from lyricframe.render.encoder import run_mux
from lyricframe.schemas.export import ChunkResponse, FinalizeRequest, InitSessionResponse
from lyricframe.services.session_store import ExportSessionStore

router = APIRouter()
logger = logging.getLogger(__name__)


def get_session_store(request: Request) -> ExportSessionStore:
    return request.app.state.session_store


SessionStore = Annotated[ExportSessionStore, Depends(get_session_store)]


async def _read_upload(upload: UploadFile, limit_bytes: int) -> bytes:
    data = await upload.read()
    if len(data) > limit_bytes:
        raise PayloadTooLargeError(
            f"{upload.filename or 'upload'} is {len(data)} bytes (limit {limit_bytes})"
        )
    return data


@router.post("/export/init", response_model=InitSessionResponse, response_model_by_alias=True)
async def init_session(
    store: SessionStore,
    audio: UploadFile = File(...),
) -> InitSessionResponse:
    """Create an export session holding the uploaded audio."""
    settings = get_settings()
    data = await _read_upload(audio, settings.max_upload_size_mb * 1024 * 1024)
    if not data:
        raise ValidationError("Audio upload is empty")

    session = await asyncio.to_thread(store.create, data, audio.filename)
    return InitSessionResponse(session_id=session.session_id)


@router.post("/export/chunk", response_model=ChunkResponse, response_model_by_alias=True)
async def append_chunk(
    store: SessionStore,
    frames: list[UploadFile] = File(...),
    start_frame: Optional[int] = Form(default=None, alias="startFrame"),
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    x_session_id: Optional[str] = Header(default=None),
) -> ChunkResponse:
    """Append a batch of frames to a session.

    Without ``startFrame`` the batch is appended at the current end.
    """
    settings = get_settings()
    raw_id = session_id or x_session_id
    session = store.get(raw_id)

    limit = settings.max_upload_size_mb * 1024 * 1024
    payload = [await _read_upload(frame, limit) for frame in frames]
    start = session.frame_count if start_frame is None else start_frame

    result = await asyncio.to_thread(store.append_frames, raw_id, start, payload)
    logger.debug(
        f"[SESSION] {session.session_id}: +{result.count} frames "
        f"(total {result.frame_count}, duplicate={result.duplicate})"
    )
    return ChunkResponse(count=result.count, frame_count=result.frame_count, duplicate=result.duplicate)


@router.post("/export/finalize")
async def finalize_session(body: FinalizeRequest, store: SessionStore) -> FileResponse:
    """Mux the session and stream the MP4; the session is removed afterwards."""
    session = store.begin_finalize(body.session_id)
    if session.frame_count == 0:
        store.discard(session)
        raise EncodeError(f"No frames uploaded for session {session.session_id}")

    try:
        output_path = await run_mux(session.directory, session.audio_path, body.fps)
    except EncodeError:
        store.discard(session)
        raise

    logger.info(f"[SESSION] {session.session_id}: finalized {session.frame_count} frames at {body.fps}fps")
    return FileResponse(
        output_path,
        media_type="video/mp4",
        filename="export.mp4",
        background=BackgroundTask(store.discard, session),
    )
