"""
LLM provider tiers for PathFlow.

Three live tiers are tried in order:
- Gemini REST API called directly (v1, then v1beta)
- Gemini through the LangChain SDK wrapper
- OpenAI chat completions through LangChain

A static template is the last resort for learning paths.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

import httpx
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI

from config import settings
from schemas import LEARNING_PATH_STEPS

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
PROVIDER_ORDER = ("gemini_rest", "gemini_sdk", "openai")

LEARNING_PATH_SYSTEM_PROMPT = (
    "You are a helpful learning path generator. Always respond with valid JSON only."
)


class ProviderError(RuntimeError):
    """A provider tier was tried and failed."""


class ProviderUnavailable(ProviderError):
    """A provider tier is not configured."""


class AllProvidersFailed(RuntimeError):
    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("No AI service available: " + "; ".join(errors))


@dataclass
class ProviderStatus:
    """Result of the startup probe, reported by /health."""
    gemini_rest: bool = False
    gemini_sdk: bool = False
    checked_at: Optional[datetime] = None

    @property
    def gemini_available(self) -> bool:
        return self.gemini_rest or self.gemini_sdk


provider_status = ProviderStatus()


# ============================================================================
# PROMPTS
# ============================================================================

def build_learning_path_prompt(skills: list[str], goal: str) -> str:
    skill_list = ", ".join(skills) if skills else "none yet"
    return f"""Create a personalized learning path for someone who wants to become: {goal}

Current skills: {skill_list}

Build on the skills they already have and close the gaps towards the goal.
The path must contain EXACTLY {LEARNING_PATH_STEPS} steps, ordered from first to last.

Respond in this EXACT JSON format:
{{
  "path": [
    {{
      "title": "Step title",
      "description": "What to learn in this step and why it matters for the goal",
      "duration": "2 weeks",
      "resources": ["Resource title - https://example.com or 'Search for ...'"],
      "skills": ["skill1", "skill2"]
    }}
  ]
}}

Important: Return ONLY valid JSON, no markdown formatting, no additional text."""


def _message_text(message) -> str:
    """Flatten a LangChain message's content to plain text."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


# ============================================================================
# PROVIDER TIERS
# ============================================================================

def _gemini_text(data: dict) -> str:
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise ProviderError("Invalid response format from Gemini API")
    if not isinstance(text, str):
        raise ProviderError("Invalid response format from Gemini API")
    return text


async def call_gemini_rest(prompt: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """Call the Gemini generateContent endpoint, one API version at a time."""
    if not settings.gemini_configured:
        raise ProviderUnavailable("GEMINI_API_KEY not set")

    payload = {"contents": [{"parts": [{"text": prompt}]}]}
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.provider_timeout_seconds)

    try:
        for version in settings.gemini_api_versions:
            url = f"{GEMINI_BASE_URL}/{version}/models/{settings.gemini_model}:generateContent"
            try:
                resp = await client.post(
                    url,
                    params={"key": settings.gemini_api_key},
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                if resp.status_code != 200:
                    logger.warning(f"[GeminiREST] Endpoint {version} failed with status {resp.status_code}")
                    continue
                return _gemini_text(resp.json())
            except (httpx.HTTPError, ValueError, ProviderError) as e:
                logger.warning(f"[GeminiREST] Endpoint {version} error: {e}")
                continue
    finally:
        if owns_client:
            await client.aclose()

    raise ProviderError("All Gemini API endpoints failed")


async def call_gemini_sdk(prompt: str) -> str:
    if not settings.gemini_configured:
        raise ProviderUnavailable("GEMINI_API_KEY not set")

    llm = ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        google_api_key=settings.gemini_api_key,
        temperature=0.7,
        timeout=settings.provider_timeout_seconds,
    )
    try:
        result = await llm.ainvoke(prompt)
    except Exception as e:
        raise ProviderError(f"Gemini SDK error: {e}") from e
    return _message_text(result)


async def call_openai(prompt: str, system: str = LEARNING_PATH_SYSTEM_PROMPT) -> str:
    if not settings.openai_configured:
        raise ProviderUnavailable("OPENAI_API_KEY not set")

    llm = ChatOpenAI(
        model=settings.openai_model,
        api_key=settings.openai_api_key,
        temperature=0.7,
        timeout=settings.provider_timeout_seconds,
    )
    try:
        result = await llm.ainvoke([SystemMessage(content=system), HumanMessage(content=prompt)])
    except Exception as e:
        raise ProviderError(f"OpenAI error: {e}") from e
    return _message_text(result)


async def call_provider(name: str, prompt: str, system: str = LEARNING_PATH_SYSTEM_PROMPT) -> str:
    """Dispatch to a live tier by name."""
    if name == "gemini_rest":
        return await call_gemini_rest(prompt)
    if name == "gemini_sdk":
        return await call_gemini_sdk(prompt)
    if name == "openai":
        return await call_openai(prompt, system=system)
    raise ValueError(f"Unknown provider: {name}")


async def generate_text(prompt: str, system: str = LEARNING_PATH_SYSTEM_PROMPT) -> Tuple[str, str]:
    """Run the live tiers in order; return (text, provider name) of the first success."""
    errors = []
    for name in PROVIDER_ORDER:
        try:
            text = await call_provider(name, prompt, system=system)
            logger.info(f"[Providers] {name} succeeded")
            return text, name
        except ProviderError as e:
            logger.warning(f"[Providers] {name} failed: {e}")
            errors.append(f"{name}: {e}")
    raise AllProvidersFailed(errors)


# ============================================================================
# STATIC FALLBACK
# ============================================================================

def fallback_learning_path(skills: list[str], goal: str) -> list[dict]:
    """Template path used when every live tier has failed."""
    known = ", ".join(skills) if skills else "your current skills"
    focus = skills[:3]
    steps = [
        (
            f"Assess your foundation for {goal}",
            f"Review how {known} apply to the work of a {goal} and list the gaps to close.",
            "1 week",
            [f"Search for '{goal} skills roadmap'"],
            focus,
        ),
        (
            f"Learn the core concepts of {goal}",
            f"Study the fundamental principles every {goal} relies on day to day.",
            "2-3 weeks",
            [f"Search for 'introduction to {goal}' courses"],
            [],
        ),
        (
            "Master the essential tools",
            f"Get comfortable with the tools and technologies most used by a {goal}.",
            "2-3 weeks",
            [f"Search for '{goal} tools tutorial'"],
            [],
        ),
        (
            "Build hands-on projects",
            f"Apply what you learned in small projects that combine {known} with new material.",
            "3-4 weeks",
            ["Search for 'beginner project ideas'"],
            focus,
        ),
        (
            "Go deeper with advanced topics",
            f"Pick a specialization within {goal} and study its advanced material.",
            "3-4 weeks",
            [f"Search for 'advanced {goal} topics'"],
            [],
        ),
        (
            "Prepare your portfolio and job search",
            f"Polish your projects, write about them, and practise interviews for {goal} roles.",
            "2 weeks",
            [f"Search for '{goal} interview questions'"],
            [],
        ),
    ]
    return [
        {
            "step_number": number,
            "title": title,
            "description": description,
            "duration": duration,
            "resources": resources,
            "skills": list(step_skills),
        }
        for number, (title, description, duration, resources, step_skills) in enumerate(steps, start=1)
    ]


# ============================================================================
# STARTUP PROBE
# ============================================================================

async def probe_providers() -> ProviderStatus:
    """Check which Gemini tiers answer; the result only feeds /health."""
    global provider_status
    status = ProviderStatus(checked_at=datetime.now(timezone.utc))

    if not settings.gemini_configured:
        logger.warning("[Providers] GEMINI_API_KEY not set - Gemini tiers will be skipped")
    else:
        logger.info(f"[Providers] Probing Gemini with key {settings.gemini_api_key[:10]}...")
        try:
            await call_gemini_rest("Say 'Hello'")
            status.gemini_rest = True
            logger.info("[Providers] Gemini direct API test successful")
        except ProviderError as e:
            logger.warning(f"[Providers] Direct API failed ({e}), trying SDK...")
            try:
                await call_gemini_sdk("Say 'Hello'")
                status.gemini_sdk = True
                logger.info(f"[Providers] Gemini SDK initialized with model: {settings.gemini_model}")
            except ProviderError as e:
                logger.error(f"[Providers] Failed to initialize Gemini: {e}")

    if settings.openai_configured:
        logger.info("[Providers] OpenAI client configured")

    provider_status = status
    return status
