"""Natural-language annotation of adaptation results using LangChain and an LLM with structured output."""

import hashlib
import json
import logging
import os
import time
from collections import OrderedDict, deque
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv
from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI

from models import AdaptationResult, AdaptationSnapshot, TaskStatus
from models_pydantic import InsightPydantic

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-lite"
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_CALLS_PER_MINUTE = 10


INSIGHT_PROMPT = """You are a supportive exam-preparation coach. A study plan was just adapted automatically.
Explain to the learner, in plain language, what changed and what they should focus on next.

## Learner
{learner_summary}

## Changes made in this run
{actions}

## Passes that could not run
{failed_passes}

## Instructions:
1. Write a short summary (2-4 sentences) of the changes and why they were made.
2. Give at most 3 concrete suggestions, most important first. Use priority HIGH only for
   topics with repeated low scores or many missed tasks.
3. Refer to topics by name, never by id, in the text. Put the topic id in related_topic_id.
4. Do not invent changes that are not listed above.

{format_instructions}

Important: Return ONLY the valid JSON object, no additional text or explanation.
"""


class RateLimiter:
    """Sliding-window call limiter; one instance per generator, never shared through globals."""

    def __init__(self, max_calls: int = DEFAULT_MAX_CALLS_PER_MINUTE, period: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.max_calls = max_calls
        self.period = period
        self.clock = clock
        self._calls: deque = deque()

    def try_acquire(self) -> bool:
        now = self.clock()
        while self._calls and now - self._calls[0] >= self.period:
            self._calls.popleft()
        if len(self._calls) >= self.max_calls:
            return False
        self._calls.append(now)
        return True


class InsightCache:
    """Bounded LRU cache of insights keyed by the prompt inputs."""

    def __init__(self, max_entries: int = 128):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def put(self, key: str, value: Dict[str, Any]) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


def build_prompt_inputs(result: AdaptationResult, snapshot: AdaptationSnapshot) -> Dict[str, str]:
    learner = snapshot.learner
    done = sum(1 for t in snapshot.tasks if t.status == TaskStatus.COMPLETED)
    learner_summary = (
        f"Exam on {snapshot.plan.exam_date.isoformat()}; "
        f"{done} of {len(snapshot.tasks)} tasks completed; "
        f"prefers studying in the {learner.preferences.preferred_study_time.value}."
    )
    lines = []
    for action in result.actions:
        topic_id = action.metadata.get("topic_id")
        topic = snapshot.topics.get(topic_id) if topic_id else None
        suffix = f" (topic: {topic.name}, id {topic.topic_id})" if topic else ""
        lines.append(f"- [{action.action_type.value}] {action.description}{suffix}")
    return {
        "learner_summary": learner_summary,
        "actions": "\n".join(lines) or "- No changes were needed.",
        "failed_passes": ", ".join(result.failed_passes) or "none",
    }


def cache_key(inputs: Dict[str, str]) -> str:
    return hashlib.sha256(json.dumps(inputs, sort_keys=True).encode("utf-8")).hexdigest()


class InsightGenerator:
    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        api_key: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[InsightCache] = None,
        chain: Optional[Any] = None,
    ):
        self.model_name = model_name
        self.temperature = temperature
        self.api_key = api_key
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.cache = cache if cache is not None else InsightCache()
        self._chain = chain

    def _get_chain(self) -> Any:
        if self._chain is not None:
            return self._chain
        api_key = self.api_key or os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise ValueError(
                "Google API key not found. Set GOOGLE_API_KEY environment variable or pass api_key parameter."
            )

        parser = JsonOutputParser(pydantic_object=InsightPydantic)
        prompt = ChatPromptTemplate.from_template(
            template=INSIGHT_PROMPT,
            partial_variables={"format_instructions": parser.get_format_instructions()},
        )
        llm = ChatGoogleGenerativeAI(model=self.model_name, temperature=self.temperature, google_api_key=api_key)
        self._chain = prompt | llm | parser
        return self._chain

    async def generate(self, result: AdaptationResult, snapshot: AdaptationSnapshot) -> Optional[Dict[str, Any]]:
        """Insight dict for the run, or None when the model is unavailable or refused."""
        inputs = build_prompt_inputs(result, snapshot)
        key = cache_key(inputs)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Using cached insight for %s", result.learner_id)
            return cached

        if not self.rate_limiter.try_acquire():
            logger.warning("Insight rate limit reached; skipping insights for %s", result.learner_id)
            return None

        try:
            raw = await self._get_chain().ainvoke(inputs)
            insight = InsightPydantic(**raw).model_dump()
        except Exception:
            logger.exception("Insight generation failed for %s", result.learner_id)
            return None

        self.cache.put(key, insight)
        return insight
