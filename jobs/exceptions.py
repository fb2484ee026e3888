class PipelineError(Exception):
    """Base for errors raised by a pipeline stage after a job was accepted."""


class DownloadError(PipelineError):
    pass


class InvalidPayloadError(PipelineError):
    """Base64 source that does not decode to a plausible video."""


class UploadError(PipelineError):
    pass


class SocialPublishError(PipelineError):
    """Per-account publish failure; recorded on the output, never fails the job."""


class TikTokError(RuntimeError):
    """TikTok OAuth or API call returned an error."""

    def __init__(self, message: str, *, status: int | None = None, payload: dict | None = None):
        super().__init__(message)
        self.status = status
        self.payload = payload or {}


class JobNotFound(LookupError):
    pass


class JobStateError(ValueError):
    """Illegal state transition (regression or leaving a terminal state)."""
