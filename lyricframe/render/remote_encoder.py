"""Encoder backend that streams frames to the export server in batches.

Frames are buffered client-side and flushed every ``batch_size`` frames as
one multipart request tagged with the index of its first frame, so client
memory stays bounded regardless of audio length. The server de-duplicates
a repeated batch by that index.
"""

import logging
from typing import Optional

import httpx

from lyricframe.config import get_settings
from lyricframe.exceptions import NetworkError, SessionError
from lyricframe.render.encoder import EncoderBackend, frame_filename

logger = logging.getLogger(__name__)


def _raise_for_response(resp: httpx.Response, session_id: Optional[str]) -> None:
    """Map an unsuccessful export-server response onto the export error types."""
    if resp.is_success:
        return

    detail = _error_message(resp)
    if resp.status_code in (404, 409, 410):
        code = {404: "SESSION_NOT_FOUND", 409: "CHUNK_OUT_OF_ORDER", 410: "SESSION_EXPIRED"}[resp.status_code]
        raise SessionError(session_id, message=detail, code=code, status_code=resp.status_code)
    raise NetworkError(f"Export server returned {resp.status_code}: {detail}")


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message", str(error))
    return str(error or body)


class RemoteSessionEncoder(EncoderBackend):
    """Session-based encoding on the export server."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        batch_size: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.base_url = base_url or settings.encoder_server_url
        self.batch_size = batch_size or settings.encoder_batch_size
        self.request_timeout = settings.request_timeout
        self.upload_timeout = settings.upload_timeout
        self._client = client
        self._owns_client = client is None
        self.session_id: Optional[str] = None
        self._buffer: list[bytes] = []
        self._flushed = 0

    @property
    def frames_sent(self) -> int:
        return self._flushed

    async def load(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.request_timeout)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._client is None:
            await self.load()
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"[REMOTE] {method} {url} failed: {e}")
            raise NetworkError(f"Export server request failed: {e}") from e
        _raise_for_response(resp, self.session_id)
        return resp

    async def init(self, audio: bytes, filename: str) -> None:
        resp = await self._request(
            "POST",
            "/api/export/init",
            files={"audio": (filename, audio, "application/octet-stream")},
            timeout=self.upload_timeout,
        )
        data = resp.json()
        session_id = data.get("sessionId")
        if not data.get("success") or not session_id:
            raise NetworkError(f"Export server did not return a session id: {data}")
        self.session_id = session_id
        logger.info(f"[REMOTE] Session {session_id} created")

    async def add_frame(self, jpeg: bytes) -> None:
        self._buffer.append(jpeg)
        if len(self._buffer) >= self.batch_size:
            await self._flush()

    async def _flush(self) -> None:
        if not self._buffer:
            return
        if self.session_id is None:
            raise SessionError(message="Frames added before the export session was initialized")

        start_frame = self._flushed
        files = [
            ("frames", (frame_filename(start_frame + i + 1), frame, "image/jpeg"))
            for i, frame in enumerate(self._buffer)
        ]
        resp = await self._request(
            "POST",
            "/api/export/chunk",
            params={"sessionId": self.session_id},
            data={"startFrame": str(start_frame)},
            files=files,
            timeout=self.upload_timeout,
        )
        data = resp.json()
        if data.get("duplicate"):
            logger.warning(f"[REMOTE] Server reported batch at {start_frame} as already applied")

        self._flushed += len(self._buffer)
        self._buffer = []

    async def finalize(self, fps: int) -> bytes:
        await self._flush()
        if self.session_id is None:
            raise SessionError(message="Finalize called before the export session was initialized")

        resp = await self._request(
            "POST",
            "/api/export/finalize",
            json={"sessionId": self.session_id, "fps": fps},
            timeout=self.upload_timeout,
        )
        logger.info(f"[REMOTE] Session {self.session_id} finalized: {len(resp.content)} bytes")
        await self._close()
        return resp.content

    async def abort(self) -> None:
        self._buffer = []
        await self._close()

    async def _close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
