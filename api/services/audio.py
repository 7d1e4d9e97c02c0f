import asyncio
import logging

from lib.error_handler import UnusableTranscript

logger = logging.getLogger(__name__)


class AudioService:
    def __init__(self, openai_client, model: str = 'whisper-1', language: str = 'en', min_length: int = 10):
        self.client = openai_client
        self.model = model
        self.language = language
        self.min_length = min_length
        logger.info(f"Audio service initialized with model: {model}")

    async def transcribe(self, audio_data: bytes, filename: str, mime_type: str = 'audio/ogg') -> str:
        """Send audio to the speech-to-text endpoint and return plain text"""
        logger.info(f"Transcribing {filename} ({len(audio_data)} bytes)...")
        # Run the blocking SDK call in an executor to keep the loop free
        loop = asyncio.get_event_loop()
        response = await loop.run_in_executor(
            None,
            lambda: self.client.audio.transcriptions.create(
                model=self.model,
                file=(filename, audio_data, mime_type),
                language=self.language,
                response_format="text"
            )
        )

        transcript = response if isinstance(response, str) else getattr(response, 'text', '')
        transcript = (transcript or '').strip()
        logger.info(f"Transcription complete: {transcript[:50]}...")
        return transcript

    def check_transcript(self, transcript: str) -> str:
        """Reject transcripts too short to be a real question."""
        if len(transcript.strip()) < self.min_length:
            raise UnusableTranscript(transcript)
        return transcript
