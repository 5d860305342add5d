"""
Typed pipeline errors.

Every fatal failure carries the name of the stage that raised it so callers
can tell a bad source from a broken encoder. Audio problems are warnings:
the pipeline records them and keeps going video-only.
"""


class CompressionError(Exception):
    """Base class for fatal compression failures."""

    def __init__(self, message: str, stage: str = "pipeline"):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class UnreadableSourceError(CompressionError):
    """Source container cannot be opened or its metadata read."""

    def __init__(self, message: str, stage: str = "probe"):
        super().__init__(message, stage)


class ProfileNotFoundError(CompressionError):
    """Requested profile name is not in the catalog."""

    def __init__(self, name: str, available: list[str] | None = None):
        available = available or []
        message = f"Unknown profile: {name}"
        if available:
            message += f" (available: {', '.join(available)})"
        super().__init__(message, stage="profile")
        self.name = name
        self.available = available


class NoSupportedCodecError(CompressionError):
    """No codec in the preference list is available in this ffmpeg build."""

    def __init__(self, preference: list[str], stage: str = "negotiate"):
        super().__init__(f"No supported codec among: {', '.join(preference) or '(empty list)'}", stage)
        self.preference = preference


class EncodeFailedError(CompressionError):
    """Decoder, encoder or muxer faulted mid-stream."""


class CancelledError(CompressionError):
    """Caller asked the pipeline to stop."""

    def __init__(self, stage: str = "pipeline"):
        super().__init__("Compression cancelled", stage)


class ThumbnailError(CompressionError):
    """Single-frame capture failed."""

    def __init__(self, message: str, stage: str = "thumbnail"):
        super().__init__(message, stage)


class AudioDegradedWarning(UserWarning):
    """Audio could not be preserved; the output is video-only."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class UploadError(CompressionError):
    """Asset store rejected the output or thumbnail."""

    def __init__(self, message: str, stage: str = "upload"):
        super().__init__(message, stage)


ERROR_TYPES: dict[str, type[CompressionError]] = {
    cls.__name__: cls
    for cls in (
        CompressionError,
        UnreadableSourceError,
        ProfileNotFoundError,
        NoSupportedCodecError,
        EncodeFailedError,
        CancelledError,
        ThumbnailError,
        UploadError,
    )
}


def error_from_kind(kind: str | None, message: str, stage: str) -> CompressionError:
    """
    Rebuild a typed error recorded elsewhere as (class name, message, stage).

    Unknown kinds come back as the base CompressionError. Only the fields
    every error carries are restored; constructor extras such as
    `ProfileNotFoundError.available` are not.
    """
    cls = ERROR_TYPES.get(kind or "", CompressionError)
    error = cls.__new__(cls)
    CompressionError.__init__(error, message, stage)
    return error
