from pydantic import BaseModel, ConfigDict, Field


class InitSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    session_id: str = Field(alias="sessionId")


class ChunkResponse(BaseModel):
    """Result of appending one frame batch.

    ``duplicate`` is true when the batch had already been applied and nothing
    was written.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    count: int = Field(description="Frames written by this request")
    frame_count: int = Field(alias="frameCount", description="Frames in the session after this request")
    duplicate: bool = False


class FinalizeRequest(BaseModel):
    """Mux the session's frames with its audio.

    Accepts camelCase ``sessionId`` as sent by the export client.
    """

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    fps: int = Field(default=30, ge=1, le=120)


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    active_sessions: int = Field(default=0, alias="activeSessions")

    model_config = ConfigDict(populate_by_name=True)
