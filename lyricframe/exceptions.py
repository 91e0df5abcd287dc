"""Custom exceptions for lyricframe.

Every export failure is fatal to the current attempt and surfaces as exactly one
``ExportError`` subclass. The export server maps the same exceptions onto HTTP
responses with machine-readable error codes.
"""

from lyricframe.constants.error_codes import get_error_spec
from lyricframe.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class LyricFrameError(Exception):
    """Base exception for all lyricframe errors.

    Provides structured error information for API responses.
    """

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        retryable = spec.get("retryable", False)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            action = SuggestedAction(
                action=spec["suggested_action"],
                endpoint=spec.get("suggested_endpoint"),
                parameters=spec.get("parameters", {}),
            )
            suggested_actions.append(action)

        suggested_fix = self.suggested_fix or spec.get("suggested_fix")

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=retryable,
            suggested_fix=suggested_fix,
            suggested_actions=suggested_actions,
        )


# =============================================================================
# Export Errors (fatal, never retried inside the pipeline)
# =============================================================================


class ExportError(LyricFrameError):
    """Base class for errors that abort an export."""

    code = "INTERNAL_ERROR"
    message = "Export failed"


class AssetLoadError(ExportError):
    """A visual asset could not be fetched or decoded."""

    code = "ASSET_LOAD_FAILED"
    status_code = 422
    message = "Failed to load asset"

    def __init__(self, source: str | None = None, *, index: int | None = None, reason: str | None = None):
        message = f"Failed to load asset: {source}" if source else self.message
        if reason:
            message = f"{message} ({reason})"
        location = ErrorLocation(asset_index=index) if index is not None else None
        super().__init__(message, location=location)


class AudioDecodeError(ExportError):
    """The source audio could not be decoded."""

    code = "AUDIO_DECODE_FAILED"
    status_code = 422
    message = "Failed to decode audio"

    def __init__(self, reason: str | None = None):
        message = f"Failed to decode audio: {reason}" if reason else self.message
        super().__init__(message)


class NetworkError(ExportError):
    """The export server could not be reached or answered with a failure."""

    code = "NETWORK_ERROR"
    status_code = 502
    message = "Export server request failed"


class EncodeError(ExportError):
    """The ffmpeg encode invocation failed."""

    code = "ENCODE_FAILED"
    status_code = 500
    message = "Video encoding failed"


class SessionError(ExportError):
    """The export session is unknown, expired, or rejected the chunk order."""

    code = "SESSION_NOT_FOUND"
    status_code = 404
    message = "Export session not found"

    def __init__(
        self,
        session_id: str | None = None,
        *,
        message: str | None = None,
        code: str | None = None,
        status_code: int | None = None,
    ):
        msg = message or (f"Export session not found: {session_id}" if session_id else self.message)
        location = ErrorLocation(session_id=session_id) if session_id else None
        super().__init__(msg, code=code, status_code=status_code, location=location)


class SessionExpiredError(SessionError):
    """Session existed but its TTL elapsed."""

    code = "SESSION_EXPIRED"
    status_code = 410

    def __init__(self, session_id: str | None = None):
        super().__init__(session_id, message=f"Export session expired: {session_id}")


class ChunkOrderError(SessionError):
    """A chunk would leave a gap or partially overlap already appended frames."""

    code = "CHUNK_OUT_OF_ORDER"
    status_code = 409

    def __init__(self, session_id: str, start_frame: int, frame_count: int):
        super().__init__(
            session_id,
            message=(
                f"Chunk starting at frame {start_frame} rejected for session {session_id}: "
                f"{frame_count} frames appended so far"
            ),
        )
        self.location = ErrorLocation(session_id=session_id, frame_index=start_frame)


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(LyricFrameError):
    """Base class for validation errors."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidTimelineError(ValidationError):
    """Timeline input violates an ordering or timing invariant."""

    code = "INVALID_TIMELINE"
    message = "Invalid timeline"

    def __init__(self, message: str | None = None, *, field: str | None = None):
        location = ErrorLocation(field=field) if field else None
        super().__init__(message or self.message, location=location)


class InvalidStageTransitionError(ValidationError):
    """Export state machine was asked to move along an edge it does not have."""

    code = "INVALID_STAGE_TRANSITION"
    message = "Invalid export stage transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move export from '{current}' to '{target}'")


class PayloadTooLargeError(ValidationError):
    """Uploaded file exceeds the configured size limit."""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    message = "Uploaded file is too large"
