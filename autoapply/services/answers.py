import threading
from abc import ABC, abstractmethod

import httpx

from autoapply.core.config import Settings
from autoapply.core.logging import get_logger
from autoapply.services.profile import CandidateProfile

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are drafting concise, professional job application responses. Use the candidate profile only. "
    "Keep responses under 1200 characters unless asked."
)


class AnswerGenerator(ABC):
    @abstractmethod
    def generate(self, question: str, profile: CandidateProfile) -> str | None:
        raise NotImplementedError


def build_answer_prompt(question: str, profile: CandidateProfile) -> str:
    context = [
        f"Name: {profile.full_name}",
        f"Location: {profile.location or ''}",
        f"Summary: {profile.summary}" if profile.summary else "",
        f"Skills: {', '.join(profile.skills)}" if profile.skills else "",
        f"LinkedIn: {profile.linkedin}" if profile.linkedin else "",
        f"GitHub: {profile.github}" if profile.github else "",
    ]
    profile_block = "\n".join(line for line in context if line)
    return f"Candidate Profile:\n{profile_block}\n\nQuestion:\n{question}\n\nAnswer:"


class MockAnswerGenerator(AnswerGenerator):
    def generate(self, question: str, profile: CandidateProfile) -> str | None:
        name = profile.full_name or "The candidate"
        return f"Generated draft (mock provider): {name} on \"{question[:200]}\""


class OpenAICompatibleAnswerGenerator(AnswerGenerator):
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        temperature: float,
        max_tokens: int,
        timeout_seconds: int,
    ) -> None:
        if not api_key:
            raise ValueError("LLM_API_KEY is required when LLM_PROVIDER=openai")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds

    def generate(self, question: str, profile: CandidateProfile) -> str | None:
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_answer_prompt(question, profile)},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Answer generation request failed: %s", exc)
            return None

        if response.status_code >= 400:
            logger.warning("Answer generation failed (%s): %s", response.status_code, response.text[:300])
            return None

        try:
            data = response.json()
            choices = data.get("choices") or [{}]
            content = (choices[0].get("message") or {}).get("content") or ""
        except (ValueError, AttributeError, IndexError, KeyError, TypeError) as exc:
            logger.warning("Answer generation returned an unreadable body: %s", exc)
            return None
        return str(content).strip() or None


class BudgetedAnswerGenerator(AnswerGenerator):
    """Caps the number of generated answers for one run."""

    def __init__(self, inner: AnswerGenerator, *, max_answers: int) -> None:
        self.inner = inner
        self.max_answers = max_answers
        self.used = 0
        self._lock = threading.Lock()

    @property
    def remaining(self) -> int:
        return max(0, self.max_answers - self.used)

    def generate(self, question: str, profile: CandidateProfile) -> str | None:
        with self._lock:
            if self.used >= self.max_answers:
                logger.info("Answer budget exhausted (%d)", self.max_answers)
                return None
            self.used += 1
        return self.inner.generate(question, profile)


def build_answer_generator(settings: Settings) -> AnswerGenerator | None:
    provider = (settings.llm_provider or "none").strip().lower()

    if provider.startswith("sk-") or provider.startswith("gsk_"):
        raise ValueError(
            "LLM_PROVIDER appears to contain an API key. Set LLM_PROVIDER to 'openai' or 'groq' "
            "and move the key to LLM_API_KEY."
        )

    if provider in {"", "none", "off"}:
        return None
    if provider == "mock":
        inner: AnswerGenerator = MockAnswerGenerator()
    elif provider in {"openai", "openai_compatible", "groq"}:
        base_url = settings.llm_base_url
        if provider == "groq" and (not base_url or base_url == "https://api.openai.com/v1"):
            base_url = "https://api.groq.com/openai/v1"
        inner = OpenAICompatibleAnswerGenerator(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=base_url,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    else:
        raise ValueError("Unsupported LLM_PROVIDER. Supported values: none, mock, openai, groq.")
    return BudgetedAnswerGenerator(inner, max_answers=settings.llm_max_answers_per_run)
