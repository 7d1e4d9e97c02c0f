import asyncio
import json
import logging

from pydantic import ValidationError as PydanticValidationError

from api.models import ExegesisContent, coerce_category
from lib.error_handler import GenerationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert biblical scholar and exegete. Analyze the following transcript of someone's thoughts about a sermon topic or scripture passage. Generate a structured exegesis brief.

Return a JSON object with this exact structure:
{
  "title": "A concise title for this exegesis brief (3-8 words)",
  "category": "old-testament" | "new-testament" | "topical",
  "greekInsights": [
    {
      "term": "Greek word in Greek characters",
      "transliteration": "English transliteration",
      "meaning": "Definition and theological significance",
      "usage": "How this word is used in the relevant passage"
    }
  ],
  "historicalContext": "2-3 paragraphs about the historical, cultural, and literary context relevant to the topic/passage discussed",
  "outlinePoints": [
    {
      "title": "Main point title",
      "content": "Detailed explanation with supporting scripture references"
    }
  ]
}

Guidelines:
- Include 2-4 Greek insights if discussing New Testament passages, or Hebrew insights for Old Testament
- For topical sermons, focus on key biblical terms related to the theme
- Provide 3-5 outline points that build a coherent argument
- Be scholarly but accessible
- Include scripture references where relevant
- Respond with the JSON object only"""


def parse_exegesis(content: str, transcript: str = '') -> ExegesisContent:
    """Parse and validate the model's JSON reply.

    Missing insight/outline lists and a missing historical context default to
    empty values. Anything else that does not fit the shape is an error; there
    is no fallback to an empty brief.
    """
    if not content or not content.strip():
        raise GenerationError("No response from language model")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Failed to parse exegesis response as JSON: {str(e)}")

    if not isinstance(data, dict):
        raise GenerationError(f"Expected a JSON object, got {type(data).__name__}")

    title = data.get('title')
    if not isinstance(title, str) or not title.strip():
        raise GenerationError("Exegesis response is missing a title")

    data['category'] = coerce_category(data.get('category'), title, transcript)

    try:
        return ExegesisContent.model_validate(data)
    except PydanticValidationError as e:
        raise GenerationError(f"Malformed exegesis response: {e.error_count()} invalid field(s): {str(e)}")


class ExegesisService:
    def __init__(self, openai_client, model: str = 'gpt-4o-mini', temperature: float = 0.7, max_tokens: int = 4096):
        self.client = openai_client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        logger.info(f"Exegesis service initialized with model: {model}")

    def _build_messages(self, transcript: str):
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"Transcript:\n\n{transcript}"}
        ]

    async def generate(self, transcript: str) -> ExegesisContent:
        """Generate a structured exegesis brief for a transcript"""
        logger.info(f"Generating exegesis for transcript: {transcript[:50]}...")
        loop = asyncio.get_event_loop()
        response = await loop.run_in_executor(
            None,
            lambda: self.client.chat.completions.create(
                model=self.model,
                messages=self._build_messages(transcript),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"}
            )
        )

        if not response.choices:
            raise GenerationError("No choices returned from language model")

        content = response.choices[0].message.content
        exegesis = parse_exegesis(content, transcript)
        logger.info(f"Generated exegesis '{exegesis.title}' ({exegesis.category.value})")
        return exegesis
