from lyricframe.schemas.envelope import ErrorInfo, ErrorLocation, ErrorResponse, SuggestedAction
from lyricframe.schemas.export import ChunkResponse, FinalizeRequest, HealthResponse, InitSessionResponse

__all__ = [
    "ErrorInfo",
    "ErrorLocation",
    "ErrorResponse",
    "SuggestedAction",
    "InitSessionResponse",
    "ChunkResponse",
    "FinalizeRequest",
    "HealthResponse",
]
