from typing import Optional
import logging

logger = logging.getLogger(__name__)

COULD_NOT_UNDERSTAND_MESSAGE = (
    "❌ I couldn't understand the audio. Please try again with a clearer recording."
)
TIMEOUT_MESSAGE = (
    "⏳ Your voice note took too long to process. "
    "Please try again, or send a shorter recording."
)
PROCESSING_FAILED_MESSAGE = (
    "❌ Something went wrong processing your voice note. Please try again later."
)


class AppError(Exception):
    def __init__(self, message: str, status_code: int = 500, user_message: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.user_message = user_message or "An error occurred. Please try again later."
        super().__init__(self.message)


class ValidationError(AppError):
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, status_code=401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, status_code=403)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class ConflictError(AppError):
    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class StageError(AppError):
    """A step of the voice-note pipeline failed."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"{stage} failed: {message}", user_message=PROCESSING_FAILED_MESSAGE)


class StageTimeout(StageError):
    """A step of the voice-note pipeline ran past its deadline."""

    def __init__(self, stage: str, timeout: float):
        self.timeout = timeout
        super().__init__(stage, f"no result after {timeout:g}s")
        self.user_message = TIMEOUT_MESSAGE


class GenerationError(AppError):
    """The language model returned something that is not a usable brief."""


class UnusableTranscript(AppError):
    def __init__(self, transcript: str):
        self.transcript = transcript
        super().__init__(
            f"Transcript too short ({len(transcript)} chars)",
            status_code=422,
            user_message=COULD_NOT_UNDERSTAND_MESSAGE,
        )


class ErrorHandler:
    @staticmethod
    def handle_unusable_transcript(error: UnusableTranscript) -> str:
        logger.info(f"Unusable transcript: {error.message}")
        return COULD_NOT_UNDERSTAND_MESSAGE

    @staticmethod
    def handle_stage_timeout(error: StageTimeout) -> str:
        logger.error(f"Stage timeout: {error.message}")
        return TIMEOUT_MESSAGE

    @staticmethod
    def handle_stage_error(error: Exception) -> str:
        logger.error(f"Voice processing error: {str(error)}", exc_info=error)
        return PROCESSING_FAILED_MESSAGE

    @classmethod
    def handle_pipeline_error(cls, error: Exception) -> str:
        """Turn any pipeline failure into the single reply sent to the user."""
        if isinstance(error, UnusableTranscript):
            return cls.handle_unusable_transcript(error)
        if isinstance(error, StageTimeout):
            return cls.handle_stage_timeout(error)
        return cls.handle_stage_error(error)
