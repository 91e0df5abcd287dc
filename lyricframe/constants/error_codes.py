"""Error codes dictionary for the export pipeline and the export server.

This is the single source of truth for all error codes, whether re-running the
export can help, and suggested recovery actions. Used by exception handlers to
generate machine-readable error responses.

``retryable`` describes the caller's options only: nothing inside the pipeline
retries. A retryable export error means "run the whole export again".
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_endpoint: str
    suggested_fix: str
    parameters: dict[str, Any]


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Export errors (fatal to the current attempt)
    # ==========================================================================
    "ASSET_LOAD_FAILED": {
        "retryable": False,
        "suggested_fix": "Regenerate or re-upload the visual asset that failed to decode",
    },
    "AUDIO_DECODE_FAILED": {
        "retryable": False,
        "suggested_fix": "Provide an audio file ffmpeg can decode (mp3, wav, m4a)",
    },
    "NETWORK_ERROR": {
        "retryable": True,
        "suggested_action": "restart_export",
        "suggested_fix": "Check that the export server is reachable, then restart the export",
    },
    "ENCODE_FAILED": {
        "retryable": True,
        "suggested_action": "restart_export",
    },
    # ==========================================================================
    # Session errors (start a new session)
    # ==========================================================================
    "SESSION_NOT_FOUND": {
        "retryable": True,
        "suggested_action": "restart_export",
        "suggested_endpoint": "POST /api/export/init",
    },
    "SESSION_EXPIRED": {
        "retryable": True,
        "suggested_action": "restart_export",
        "suggested_endpoint": "POST /api/export/init",
    },
    "CHUNK_OUT_OF_ORDER": {
        "retryable": True,
        "suggested_action": "restart_export",
        "suggested_fix": "Chunks must be uploaded in frame order starting at frame 0",
    },
    # ==========================================================================
    # Validation errors (not retryable, fix input)
    # ==========================================================================
    "INVALID_TIMELINE": {
        "retryable": False,
    },
    "INVALID_STAGE_TRANSITION": {
        "retryable": False,
    },
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    "PAYLOAD_TOO_LARGE": {
        "retryable": False,
        "suggested_fix": "Lower the encoder batch size",
    },
    # ==========================================================================
    # System errors
    # ==========================================================================
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "restart_export",
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})
