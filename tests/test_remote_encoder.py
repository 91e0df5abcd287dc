"""Tests for the session-based remote encoder (export server client)."""

import json

import httpx
import pytest

from lyricframe.exceptions import NetworkError, SessionError
from lyricframe.render.remote_encoder import RemoteSessionEncoder


class FakeExportServer:
    """Records requests and answers like the export server."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.chunk_status = 200
        self.finalize_status = 200
        self.offline = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append(request)
        path = request.url.path
        if path == "/api/export/init":
            return httpx.Response(200, json={"success": True, "sessionId": "abc123"})
        if path == "/api/export/chunk":
            if self.chunk_status != 200:
                return httpx.Response(
                    self.chunk_status,
                    json={"success": False, "error": {"code": "X", "message": "chunk rejected"}},
                )
            return httpx.Response(200, json={"success": True, "count": 2, "frameCount": 2, "duplicate": False})
        if path == "/api/export/finalize":
            if self.finalize_status != 200:
                return httpx.Response(self.finalize_status, text="ffmpeg exploded")
            return httpx.Response(200, content=b"MP4DATA", headers={"content-type": "video/mp4"})
        return httpx.Response(404)

    def chunk_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/api/export/chunk"]


@pytest.fixture
def server():
    return FakeExportServer()


@pytest.fixture
def encoder(server):
    client = httpx.AsyncClient(base_url="http://export.test", transport=httpx.MockTransport(server.handler))
    return RemoteSessionEncoder(batch_size=2, client=client)


class TestRemoteSessionEncoder:
    """Tests for init -> chunk* -> finalize against a fake server."""

    @pytest.mark.asyncio
    async def test_full_session(self, server, encoder):
        await encoder.load()
        await encoder.init(b"audio", "song.mp3")
        assert encoder.session_id == "abc123"

        for i in range(5):
            await encoder.add_frame(f"jpeg{i}".encode())
        video = await encoder.finalize(30)

        assert video == b"MP4DATA"
        assert encoder.frames_sent == 5
        chunks = server.chunk_requests()
        assert len(chunks) == 3
        assert all(r.url.params["sessionId"] == "abc123" for r in chunks)

        finalize = server.requests[-1]
        assert finalize.url.path == "/api/export/finalize"
        assert json.loads(finalize.content) == {"sessionId": "abc123", "fps": 30}

    @pytest.mark.asyncio
    async def test_chunks_tagged_with_start_frame(self, server, encoder):
        await encoder.init(b"audio", "song.mp3")
        for i in range(4):
            await encoder.add_frame(b"x")
        bodies = [r.content for r in server.chunk_requests()]
        assert b'name="startFrame"\r\n\r\n0' in bodies[0]
        assert b'name="startFrame"\r\n\r\n2' in bodies[1]
        assert b"frame000003.jpg" in bodies[1]

    @pytest.mark.asyncio
    async def test_buffer_not_sent_until_batch_full(self, server, encoder):
        await encoder.init(b"audio", "song.mp3")
        await encoder.add_frame(b"x")
        assert server.chunk_requests() == []
        assert encoder.frames_sent == 0

    @pytest.mark.asyncio
    async def test_expired_session(self, server, encoder):
        server.chunk_status = 410
        await encoder.init(b"audio", "song.mp3")
        await encoder.add_frame(b"x")
        with pytest.raises(SessionError) as exc_info:
            await encoder.add_frame(b"y")
        assert exc_info.value.code == "SESSION_EXPIRED"
        assert exc_info.value.status_code == 410
        assert exc_info.value.message == "chunk rejected"

    @pytest.mark.asyncio
    async def test_out_of_order_chunk(self, server, encoder):
        server.chunk_status = 409
        await encoder.init(b"audio", "song.mp3")
        with pytest.raises(SessionError) as exc_info:
            await encoder.add_frame(b"x")
            await encoder.add_frame(b"y")
        assert exc_info.value.code == "CHUNK_OUT_OF_ORDER"

    @pytest.mark.asyncio
    async def test_server_error_is_network_error(self, server, encoder):
        server.finalize_status = 500
        await encoder.init(b"audio", "song.mp3")
        await encoder.add_frame(b"x")
        with pytest.raises(NetworkError) as exc_info:
            await encoder.finalize(30)
        assert "500" in exc_info.value.message
        assert "ffmpeg exploded" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unreachable_server(self, server, encoder):
        server.offline = True
        with pytest.raises(NetworkError):
            await encoder.init(b"audio", "song.mp3")

    @pytest.mark.asyncio
    async def test_frames_before_init_rejected(self, encoder):
        await encoder.add_frame(b"x")
        with pytest.raises(SessionError):
            await encoder.add_frame(b"y")

    @pytest.mark.asyncio
    async def test_abort_drops_buffer(self, server, encoder):
        await encoder.init(b"audio", "song.mp3")
        await encoder.add_frame(b"x")
        await encoder.abort()
        assert server.chunk_requests() == []
