"""Capability-stage generation for quests that arrive without stages.

Asks an LLM for a five-stage competence progression
(reproduce, modify, diagnose, design, ship). Any LLM failure or
malformed payload falls back to a deterministic template so plan
initialization never depends on the network.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from drillcoach.core.models import CapabilityStage, UserLevel
from drillcoach.llm.client import LLMClient, LLMError
from drillcoach.llm.stage_cache import DEFAULT_TTL_SECONDS, InMemoryTTLCache, StageCache
from drillcoach.utils.math_utils import ceil_div

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

StageSource = Literal["llm", "cache", "fallback"]

STAGE_COUNT = 5
DAYS_PER_STAGE_DIVISOR = 5

REQUIRED_STAGE_FIELDS = ("title", "capability", "artifact", "designed_failure", "transfer")

DEFAULT_CONSEQUENCE = "The result fails in a way you can observe"
DEFAULT_RECOVERY = "Identify the failure, diagnose the cause, fix it, and prevent recurrence"

TOPIC_PREFIXES = [
    re.compile(r"^(learn|study|master|understand)\s+(to\s+)?", re.IGNORECASE),
    re.compile(r"^how\s+to\s+", re.IGNORECASE),
    re.compile(r"^i\s+want\s+to\s+", re.IGNORECASE),
    re.compile(r"^about\s+", re.IGNORECASE),
]

LEVEL_CONTEXT: dict[str, str] = {
    "beginner": "Complete beginner with no prior experience.",
    "intermediate": "Some familiarity, building solid foundations.",
    "advanced": "Has experience, filling gaps toward mastery.",
}

# =============================================================================
# PROMPTS
# =============================================================================

SYSTEM_PROMPT_STAGES = """You are an instructional designer who builds practice progressions for any topic.

Use five stages of competence:
1. REPRODUCE: create a basic outcome unaided
2. MODIFY: adapt existing work under constraints
3. DIAGNOSE: find and fix failures systematically
4. DESIGN: build from requirements, not instructions
5. SHIP: put the work in front of others and handle feedback

Every stage needs a designed failure (a specific way to break the work),
its visible consequence, and the recovery (detect, fix, prevent).

Stage titles must be specific to the topic (2-5 words). Avoid generic
names such as "Fundamentals" or "Debugging & Problem-Solving".

Reply with JSON only:
{"stages": [
  {"title": "...", "capability": "verb-first, verifiable action",
   "artifact": "inspectable output that proves competence",
   "designed_failure": "...", "consequence": "...", "recovery": "...",
   "transfer": "apply the skill in a new context",
   "topics": ["subtopic", "..."]}
]}"""

USER_PROMPT_STAGES = """Generate a 5-stage capability progression for:

TOPIC: {topic}
LEVEL: {level} - {level_context}
DURATION: {days} days (~{days_per_stage} days per stage)

Return exactly 5 stages."""


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class GenerationResult:
    """Stages produced for a topic and where they came from."""

    stages: list[CapabilityStage]
    source: StageSource
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stages": [s.to_dict() for s in self.stages],
            "source": self.source,
            "warnings": self.warnings,
        }


class StageValidationError(Exception):
    """LLM payload does not describe five complete stages."""

    pass


# =============================================================================
# HELPERS
# =============================================================================


def normalize_topic(topic: str) -> str:
    """Lowercase a topic and strip learning-intent prefixes.

    >>> normalize_topic("Learn to play Guitar")
    'play guitar'
    """
    result = topic.strip().lower()
    for pattern in TOPIC_PREFIXES:
        result = pattern.sub("", result)
    return result.strip()


def format_topic_name(topic: str) -> str:
    """Title-case a normalized topic for display."""
    words = re.split(r"[\s-]+", normalize_topic(topic))
    return " ".join(w[:1].upper() + w[1:] for w in words if w)


def cache_key(topic: str, level: str, days: int) -> str:
    return f"{normalize_topic(topic)}:{level}:{days}"


def validate_stages(payload: Any) -> list[CapabilityStage]:
    """Convert an LLM payload into exactly five CapabilityStage objects.

    Accepts {"stages": [...]} or a bare list. Missing consequence and
    recovery get generic defaults; every other required field must be
    a non-empty string and topics a non-empty list.

    Raises:
        StageValidationError: If the payload is malformed
    """
    raw = payload.get("stages") if isinstance(payload, dict) else payload
    if not isinstance(raw, list):
        raise StageValidationError("Response has no stage list")
    if len(raw) != STAGE_COUNT:
        raise StageValidationError(f"Expected {STAGE_COUNT} stages, got {len(raw)}")

    stages = []
    for i, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            raise StageValidationError(f"Stage {i}: not an object")
        if "designedFailure" in item and "designed_failure" not in item:
            item = {**item, "designed_failure": item["designedFailure"]}

        for name in REQUIRED_STAGE_FIELDS:
            value = item.get(name)
            if not isinstance(value, str) or not value.strip():
                raise StageValidationError(f"Stage {i}: missing {name}")

        topics = item.get("topics")
        if not isinstance(topics, list) or not topics:
            raise StageValidationError(f"Stage {i}: missing or empty topics")

        consequence = item.get("consequence")
        recovery = item.get("recovery")
        stages.append(
            CapabilityStage(
                stage=i,
                title=item["title"].strip(),
                capability=item["capability"].strip(),
                artifact=item["artifact"].strip(),
                designed_failure=item["designed_failure"].strip(),
                consequence=consequence.strip() if isinstance(consequence, str) and consequence.strip() else DEFAULT_CONSEQUENCE,
                recovery=recovery.strip() if isinstance(recovery, str) and recovery.strip() else DEFAULT_RECOVERY,
                transfer=item["transfer"].strip(),
                topics=[str(t) for t in topics],
            )
        )
    return stages


def fallback_stages(topic: str) -> list[CapabilityStage]:
    """Deterministic five-stage progression for any topic."""
    name = format_topic_name(topic)
    t = normalize_topic(topic)

    return [
        CapabilityStage(
            stage=1,
            title=f"Create Your First {name}",
            capability=f"Create a basic {t} result from scratch without step-by-step guidance",
            artifact=f"A working example that demonstrates fundamental {t} concepts",
            designed_failure="Skip a critical step so the output fails in an obvious way",
            consequence="The output does not work at all, or is visibly wrong",
            recovery="Compare against a known-good example, find the missing step, and rebuild with it",
            transfer="Create the same kind of output for a different use case",
            topics=[t, "basics", "fundamentals"],
        ),
        CapabilityStage(
            stage=2,
            title=f"Customize {name} Your Way",
            capability=f"Modify existing {t} work to meet a new requirement",
            artifact="An adapted version with the changes and their rationale written down",
            designed_failure="Break something that worked while adding the new behaviour",
            consequence="A previously working part now fails, and the regression is not obvious",
            recovery="Re-check existing behaviour after each change and isolate the edit that broke it",
            transfer="Apply the same modification pattern to a different starting point",
            topics=[t, "customization", "adaptation"],
        ),
        CapabilityStage(
            stage=3,
            title=f"Fix {name} Problems",
            capability=f"Diagnose and fix problems in {t} work systematically",
            artifact="A debugging log showing the problem, the investigation and the fix",
            designed_failure="Fix a symptom instead of the root cause",
            consequence="The problem seems fixed but comes back, or the fix breaks something else",
            recovery="Trace the causal chain to its origin and verify the fix addresses it",
            transfer="Debug a problem in an unfamiliar context",
            topics=[t, "debugging", "troubleshooting"],
        ),
        CapabilityStage(
            stage=4,
            title=f"Design Original {name}",
            capability=f"Build a {t} solution from requirements alone",
            artifact="A complete solution with its design decisions documented",
            designed_failure="Over-engineer or under-engineer for the actual requirements",
            consequence="The result is either too complex to maintain or too simple for real needs",
            recovery="Re-read the requirements, separate real constraints from assumed ones, and refactor",
            transfer="Design a solution for requirements in a less familiar domain",
            topics=[t, "design", "decision-making"],
        ),
        CapabilityStage(
            stage=5,
            title=f"Share {name} With Others",
            capability=f"Put {t} work in front of real users and handle their feedback",
            artifact="A shared result with documentation and a record of feedback addressed",
            designed_failure="Receive critical feedback you did not anticipate",
            consequence="People struggle with something you thought was obvious",
            recovery="Group feedback by frequency and severity, fix the top items, and note the lessons",
            transfer="Help someone else share their work and process their feedback",
            topics=[t, "feedback", "iteration"],
        ),
    ]


# =============================================================================
# GENERATOR
# =============================================================================


class CapabilityGenerator:
    """Produces capability stages for a topic, with caching and fallback.

    Args:
        client: LLM client; None means always use the fallback
        cache: Stage cache (defaults to an in-memory TTL cache)
        ttl_seconds: TTL for the default cache
    """

    def __init__(
        self,
        client: LLMClient | None = None,
        cache: StageCache | None = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        self.client = client
        self.cache = cache if cache is not None else InMemoryTTLCache(ttl_seconds=ttl_seconds)

    def generate(
        self,
        topic: str,
        level: UserLevel = "beginner",
        days: int = 30,
    ) -> GenerationResult:
        """Generate five capability stages for a topic.

        Args:
            topic: Free-text topic ("learn rust", "Guitar")
            level: Learner level
            days: Planned duration in days

        Returns:
            GenerationResult; source is "cache", "llm" or "fallback".
        """
        key = cache_key(topic, level, days)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("stages_cache_hit", key=key)
            return GenerationResult(stages=cached, source="cache")

        client = self.client
        if client is None:
            logger.info("generation_disabled_using_fallback", topic=normalize_topic(topic))
            return GenerationResult(stages=fallback_stages(topic), source="fallback")

        if not client.is_available():
            logger.warning("llm_unavailable_using_fallback", provider=client.config.provider)
            return GenerationResult(
                stages=fallback_stages(topic),
                source="fallback",
                warnings=[f"LLM server unavailable ({client.config.provider}), using template"],
            )

        try:
            stages = self._generate_via_llm(client, topic, level, days)
        except (LLMError, StageValidationError) as e:
            logger.warning("generation_failed_using_fallback", topic=normalize_topic(topic), error=str(e))
            return GenerationResult(
                stages=fallback_stages(topic),
                source="fallback",
                warnings=[f"Stage generation failed, using template: {e}"],
            )

        self.cache.set(key, stages)
        logger.info("stages_generated", topic=normalize_topic(topic), level=level, days=days)
        return GenerationResult(stages=stages, source="llm")

    def _generate_via_llm(
        self,
        client: LLMClient,
        topic: str,
        level: str,
        days: int,
    ) -> list[CapabilityStage]:
        user_prompt = USER_PROMPT_STAGES.format(
            topic=normalize_topic(topic),
            level=level,
            level_context=LEVEL_CONTEXT.get(level, LEVEL_CONTEXT["intermediate"]),
            days=days,
            days_per_stage=max(1, ceil_div(days, DAYS_PER_STAGE_DIVISOR)),
        )
        payload = client.simple_json(
            system_prompt=SYSTEM_PROMPT_STAGES,
            user_message=user_prompt,
        )
        return validate_stages(payload)
