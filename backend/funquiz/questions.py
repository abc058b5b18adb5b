from __future__ import annotations

import json
import random
from typing import Any, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from .config import OpenAISettings, Settings
from .errors import InvalidArgumentError, QuestionGenerationError
from .models import Difficulty, Question

logger = structlog.get_logger(__name__)


class QuestionProvider:
    async def generate(self, count: int, category: Optional[str] = None) -> List[Question]:
        raise NotImplementedError


def _q(text: str, options: List[str], correct_index: int, category: str, difficulty: Difficulty) -> Question:
    return Question(text=text, options=options, correct_index=correct_index, category=category, difficulty=difficulty)


SAMPLE_QUESTIONS: List[Question] = [
    _q("What is the capital of France?", ["Paris", "London", "Berlin", "Madrid"], 0, "Geography", Difficulty.EASY),
    _q("Which river flows through Cairo?", ["Tigris", "Nile", "Danube", "Congo"], 1, "Geography", Difficulty.EASY),
    _q("What is the smallest country in the world by area?", ["Monaco", "San Marino", "Vatican City", "Malta"], 2, "Geography", Difficulty.MEDIUM),
    _q("Which programming language was created by Microsoft?", ["Java", "Python", "C#", "Ruby"], 2, "Technology", Difficulty.MEDIUM),
    _q("What does CPU stand for?", ["Central Processing Unit", "Computer Personal Unit", "Central Program Utility", "Core Processing Unit"], 0, "Technology", Difficulty.EASY),
    _q("In what year was the first iPhone released?", ["2005", "2006", "2007", "2008"], 2, "Technology", Difficulty.HARD),
    _q("What is the chemical symbol for gold?", ["Ag", "Fe", "Cu", "Au"], 3, "Science", Difficulty.EASY),
    _q("Which planet is known as the Red Planet?", ["Earth", "Mars", "Jupiter", "Venus"], 1, "Science", Difficulty.EASY),
    _q("What is the most abundant gas in Earth's atmosphere?", ["Oxygen", "Carbon dioxide", "Nitrogen", "Argon"], 2, "Science", Difficulty.MEDIUM),
    _q("Who painted the Mona Lisa?", ["Leonardo da Vinci", "Vincent van Gogh", "Pablo Picasso", "Michelangelo"], 0, "Arts", Difficulty.MEDIUM),
    _q("Which composer wrote the Four Seasons?", ["Bach", "Vivaldi", "Mozart", "Handel"], 1, "Arts", Difficulty.HARD),
    _q("In which year did World War II end?", ["1943", "1944", "1945", "1946"], 2, "History", Difficulty.MEDIUM),
    _q("Who was the first emperor of Rome?", ["Julius Caesar", "Augustus", "Nero", "Caligula"], 1, "History", Difficulty.HARD),
    _q("How many players are on a football (soccer) team on the pitch?", ["9", "10", "11", "12"], 2, "Sports", Difficulty.EASY),
    _q("Which country has won the most FIFA World Cups?", ["Germany", "Italy", "Argentina", "Brazil"], 3, "Sports", Difficulty.MEDIUM),
    _q("Which band released the album Abbey Road?", ["The Rolling Stones", "The Beatles", "Queen", "Pink Floyd"], 1, "Entertainment", Difficulty.EASY),
    _q("Who directed the film Jurassic Park?", ["James Cameron", "George Lucas", "Steven Spielberg", "Ridley Scott"], 2, "Entertainment", Difficulty.MEDIUM),
    _q("How many continents are there on Earth?", ["5", "6", "7", "8"], 2, "General", Difficulty.EASY),
    _q("How many sides does a hexagon have?", ["5", "6", "7", "8"], 1, "General", Difficulty.EASY),
    _q("What is the hardest natural substance?", ["Gold", "Iron", "Diamond", "Quartz"], 2, "General", Difficulty.MEDIUM),
]


class SampleQuestionProvider(QuestionProvider):
    """Serves questions from a built-in bank, no network needed."""

    def __init__(self, questions: Optional[List[Question]] = None, rng: Optional[random.Random] = None):
        self._questions = list(questions if questions is not None else SAMPLE_QUESTIONS)
        self._rng = rng or random.Random()

    async def generate(self, count: int, category: Optional[str] = None) -> List[Question]:
        if count < 1:
            raise InvalidArgumentError("count must be at least 1")

        wanted = (category or "").strip().lower()
        matching = [q for q in self._questions if wanted and q.category.lower() == wanted]
        others = [q for q in self._questions if q not in matching]
        self._rng.shuffle(matching)
        self._rng.shuffle(others)

        # top up from other categories when the requested one runs short
        selected = (matching + others)[:count]
        logger.info("sample_questions_selected", requested=count, category=category, returned=len(selected))
        return selected


SYSTEM_PROMPT = """You are a helpful assistant designed to output JSON.
Generate {count} multiple-choice quiz questions about {topic}.
Each question should have a 'Question' (string), 'Options' (an array of exactly 4 strings),
a 'CorrectOptionIndex' (integer, 0-based index of the correct option in the 'Options' array)
and a 'Difficulty' (one of "Easy", "Medium", "Hard").
Return a JSON object with a 'questions' property containing an array of question objects."""

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "questions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "Question": {"type": "string"},
                    "Options": {
                        "type": "array",
                        "items": {"type": "string"},
                        "minItems": 4,
                        "maxItems": 4,
                    },
                    "CorrectOptionIndex": {"type": "integer", "minimum": 0, "maximum": 3},
                    "Difficulty": {"type": "string", "enum": ["Easy", "Medium", "Hard"]},
                },
                "required": ["Question", "Options", "CorrectOptionIndex", "Difficulty"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["questions"],
    "additionalProperties": False,
}


class OpenAIQuestionProvider(QuestionProvider):
    """Generates questions with an Azure OpenAI chat deployment."""

    def __init__(self, settings: OpenAISettings, client: Optional[httpx.AsyncClient] = None):
        if not settings.is_configured:
            raise InvalidArgumentError("Azure OpenAI endpoint and api key are required")
        self.settings = settings
        self._client = client

    def _completions_url(self) -> str:
        endpoint = self.settings.endpoint.rstrip("/")
        return f"{endpoint}/openai/deployments/{self.settings.deployment_name}/chat/completions"

    def _payload(self, count: int, topic: str) -> dict[str, Any]:
        return {
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT.format(count=count, topic=topic)},
                {"role": "user", "content": f"Generate exactly {count} questions about {topic}."},
            ],
            "temperature": self.settings.temperature,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "quiz_questions", "schema": RESPONSE_SCHEMA, "strict": True},
            },
        }

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        kwargs = {
            "params": {"api-version": self.settings.api_version},
            "headers": {"api-key": self.settings.api_key},
            "json": payload,
        }
        if self._client is not None:
            response = await self._client.post(self._completions_url(), **kwargs)
        else:
            async with httpx.AsyncClient(timeout=self.settings.timeout_seconds) as client:
                response = await client.post(self._completions_url(), **kwargs)
        response.raise_for_status()
        return response.json()

    async def generate(self, count: int, category: Optional[str] = None) -> List[Question]:
        if count < 1:
            raise InvalidArgumentError("count must be at least 1")
        topic = category or "General"
        logger.info("openai_questions_requested", count=count, topic=topic)

        try:
            body = await self._post(self._payload(count, topic))
            content = body["choices"][0]["message"]["content"] or ""
        except httpx.HTTPError as exc:
            logger.error("openai_request_failed", topic=topic, error=str(exc))
            raise QuestionGenerationError(f"Question service request failed: {exc}") from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error("openai_response_malformed", topic=topic, error=str(exc))
            raise QuestionGenerationError("Question service returned an unexpected response") from exc

        questions = parse_questions(content, topic)
        if not questions:
            raise QuestionGenerationError(f"No usable questions were generated for {topic}")
        logger.info("openai_questions_generated", topic=topic, count=len(questions))
        return questions[:count]


def parse_questions(content: str, category: str) -> List[Question]:
    """Parse model output, either ``{"questions": [...]}`` or a bare list.

    Items that do not form a valid question are skipped.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise QuestionGenerationError("Question service returned invalid JSON") from exc

    if isinstance(data, dict):
        data = data.get("questions", data.get("Questions"))
    if not isinstance(data, list):
        raise QuestionGenerationError("Question service response has no question list")

    questions: List[Question] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            questions.append(
                Question(
                    text=item.get("Question") or item.get("question") or item.get("text"),
                    options=item.get("Options") or item.get("options") or [],
                    correct_index=item.get("CorrectOptionIndex", item.get("correctOptionIndex")),
                    category=category,
                    difficulty=item.get("Difficulty") or item.get("difficulty") or Difficulty.MEDIUM,
                )
            )
        except ValidationError as exc:
            logger.warning("generated_question_skipped", error=str(exc))
    return questions


def build_question_provider(settings: Settings) -> QuestionProvider:
    if settings.OPENAI.is_configured:
        return OpenAIQuestionProvider(settings.OPENAI)
    logger.info("openai_not_configured_using_sample_bank")
    return SampleQuestionProvider()
