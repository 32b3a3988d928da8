"""Validation Pipeline.

Runs project content through an ordered list of independent agents and
aggregates their outcomes into a :class:`ValidationResult`. Core agents are
pure functions of the content, so identical content always yields identical
findings. Network-backed enrichment agents run separately (see ``enrich``) and
can never block or break the core checks.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any

from artify.errors import AgentError
from artify.models.validation import AgentOutcome, Finding, Severity, ValidationResult, Verdict

logger = logging.getLogger(__name__)

Content = dict[str, dict[str, Any]]
Agent = Callable[[Content], AgentOutcome]
EnrichmentAgent = Callable[[Content], Awaitable[AgentOutcome]]

AGENT_ERROR_MESSAGE = "agent error"
DEFAULT_CACHE_SIZE = 256

# Declared order is the report order
CORE_AGENTS: list[tuple[str, Agent]] = []


def agent(name: str) -> Callable[[Agent], Agent]:
    """Register a core agent under ``name``, appending it to the declared order."""

    def register(fn: Agent) -> Agent:
        CORE_AGENTS.append((name, fn))
        return fn

    return register


def _section(content: Content, stage: str) -> dict[str, Any]:
    return content.get(stage) or {}


def _ok(message: str) -> AgentOutcome:
    return AgentOutcome(verdict=Verdict.PASS, message=message, severity=Severity.INFO)


def _blocking(message: str) -> AgentOutcome:
    return AgentOutcome(verdict=Verdict.FAIL, message=message, severity=Severity.BLOCKING)


def _advice(message: str) -> AgentOutcome:
    return AgentOutcome(verdict=Verdict.WARN, message=message, severity=Severity.WARNING)


# --- Required ---


@agent("title-check")
def check_title(content: Content) -> AgentOutcome:
    title = str(_section(content, "finalize").get("title") or "").strip()
    if title:
        return _ok("Game title set")
    return _blocking("Give your game a working title")


@agent("length-check")
def check_concept_length(content: Content) -> AgentOutcome:
    concept = str(_section(content, "finalize").get("concept") or "").strip()
    if len(concept) > 20:
        return _ok("Concept is described")
    return _blocking("Write a clear description of your game (more than 20 characters)")


@agent("team-size")
def check_team_size(content: Content) -> AgentOutcome:
    if _section(content, "idea").get("team_size"):
        return _ok("Team size set")
    return _blocking("Specify your team size")


@agent("time-horizon")
def check_time_horizon(content: Content) -> AgentOutcome:
    if _section(content, "idea").get("time_horizon"):
        return _ok("Time horizon set")
    return _blocking("Set your development timeline")


# --- Recommended ---


@agent("game-loop")
def check_game_loop(content: Content) -> AgentOutcome:
    nodes = _section(content, "gameloop").get("nodes") or []
    types = {node.get("type") for node in nodes}
    has_connection = any(node.get("connections") for node in nodes)
    if len(nodes) < 3 or "action" not in types or not has_connection:
        return _advice("Map out your core gameplay loop (action → challenge → reward)")

    missing = [t for t in ("action", "challenge", "reward") if t not in types]
    if missing:
        return _advice(f"Loop is missing core elements: {', '.join(missing)}")
    return _ok(f"Game loop has {len(nodes)} connected nodes")


@agent("game-questions")
def check_game_questions(content: Content) -> AgentOutcome:
    questions = _section(content, "finalize").get("game_questions") or {}
    required = ("one_sentence", "genre", "target_player", "price_point")
    missing = [key for key in required if not questions.get(key)]
    if missing:
        return _advice(f"Answer the key questions about your game: {', '.join(missing)}")
    return _ok("Key game questions answered")


@agent("skill-tree")
def check_skill_tree(content: Content) -> AgentOutcome:
    skills = _section(content, "finalize").get("skill_tree") or []
    if len(skills) >= 2:
        return _ok(f"{len(skills)} skills defined")
    return _advice("Define at least two skills players will develop")


@agent("vibes")
def check_vibes(content: Content) -> AgentOutcome:
    if _section(content, "idea").get("vibe_chips"):
        return _ok("Vibes selected")
    return _advice("Select the emotional tone of your experience")


@agent("ikigai-overlap")
def check_ikigai(content: Content) -> AgentOutcome:
    chips = _section(content, "ikigai").get("chips") or []
    if not chips:
        return _ok("Ikigai path not used")
    overlaps = sum(1 for chip in chips if len(chip.get("categories") or []) >= 2)
    if len(chips) >= 8 and overlaps >= 3:
        return _ok(f"{overlaps} ikigai sweet spots found")
    return _advice(
        f"{len(chips)} chips with {overlaps} overlaps; aim for 8 chips and 3 overlaps"
    )


# --- Pipeline ---


def content_hash(content: Content) -> str:
    """Stable hash of content, used as the validation cache key."""
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def aggregate(findings: list[Finding], *, threshold: Severity = Severity.BLOCKING) -> str:
    """Overall verdict: ``fail``, ``partial`` or ``pass``."""
    if any(f.verdict == Verdict.FAIL and f.severity.rank >= threshold.rank for f in findings):
        return "fail"
    if any(f.verdict in (Verdict.FAIL, Verdict.WARN) for f in findings):
        return "partial"
    return "pass"


def _finding(name: str, outcome: Any) -> Finding:
    if not isinstance(outcome, AgentOutcome):
        raise AgentError(f"Agent {name} returned {type(outcome).__name__}, not an outcome")
    return Finding(agent_name=name, **outcome.model_dump())


def run_agent(name: str, fn: Agent, content: Content) -> Finding:
    """Run one agent; any exception becomes a blocking ``agent error`` finding."""
    try:
        return _finding(name, fn(content))
    except AgentError as e:
        logger.error("Validation agent %s: %s", name, e)
    except Exception:
        logger.exception("Validation agent %s failed", name)
    return Finding(
        agent_name=name,
        verdict=Verdict.FAIL,
        message=AGENT_ERROR_MESSAGE,
        severity=Severity.BLOCKING,
    )


def _completion(findings: list[Finding]) -> int:
    if not findings:
        return 0
    passed = sum(1 for f in findings if f.verdict == Verdict.PASS)
    return math.floor(passed * 100 / len(findings) + 0.5)


class ValidationPipeline:
    """Ordered agent runner with an LRU result cache keyed by content hash."""

    def __init__(
        self,
        agents: list[tuple[str, Agent]] | None = None,
        *,
        blocking_threshold: Severity | str = Severity.BLOCKING,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self._agents = list(CORE_AGENTS if agents is None else agents)
        self._threshold = Severity(blocking_threshold)
        self._cache_size = cache_size
        self._cache: OrderedDict[str, ValidationResult] = OrderedDict()

    @property
    def agent_names(self) -> list[str]:
        return [name for name, _ in self._agents]

    def validate(self, content: Content) -> ValidationResult:
        key = content_hash(content)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached.model_copy(deep=True)

        findings = [run_agent(name, fn, content) for name, fn in self._agents]
        result = self._result(findings, key)
        self._cache[key] = result
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return result.model_copy(deep=True)

    async def enrich(
        self,
        content: Content,
        agents: list[tuple[str, EnrichmentAgent]],
        *,
        timeout: float = 20.0,
    ) -> ValidationResult:
        """Core validation plus network-backed agents, run concurrently.

        Enrichment findings follow the core findings in declared order. An
        enrichment agent that errors or times out is reported as a non-blocking
        warning so an unreachable service never fails the concept.
        """
        core = self.validate(content)

        async def _run(name: str, fn: EnrichmentAgent) -> Finding:
            try:
                return _finding(name, await asyncio.wait_for(fn(content), timeout=timeout))
            except TimeoutError:
                logger.warning("Enrichment agent %s timed out after %.1fs", name, timeout)
                return Finding(
                    agent_name=name,
                    verdict=Verdict.WARN,
                    message="agent timed out",
                    severity=Severity.WARNING,
                )
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Enrichment agent %s failed", name)
                return Finding(
                    agent_name=name,
                    verdict=Verdict.WARN,
                    message="agent unavailable",
                    severity=Severity.WARNING,
                )

        extra = await asyncio.gather(*(_run(name, fn) for name, fn in agents))
        return self._result(core.findings + list(extra), core.content_hash)

    def _result(self, findings: list[Finding], key: str) -> ValidationResult:
        return ValidationResult(
            overall=aggregate(findings, threshold=self._threshold),
            findings=findings,
            completion_percentage=_completion(findings),
            content_hash=key,
        )


_default_pipeline = ValidationPipeline()


def validate(content: Content) -> ValidationResult:
    """Validate content with the registered core agents."""
    return _default_pipeline.validate(content)


def readiness_report(result: ValidationResult) -> dict[str, Any]:
    """Summarize what still blocks validation and what is merely recommended."""
    required_missing = [
        f.agent_name
        for f in result.findings
        if f.verdict != Verdict.PASS and f.severity == Severity.BLOCKING
    ]
    recommended_missing = [
        f.agent_name
        for f in result.findings
        if f.verdict != Verdict.PASS and f.severity != Severity.BLOCKING
    ]
    return {
        "is_ready": not required_missing,
        "completion_percentage": result.completion_percentage,
        "required_missing": required_missing,
        "recommended_missing": recommended_missing,
    }


def genre_market_agent(
    fetch_genres: Callable[[], Awaitable[list[dict[str, Any]]]],
) -> EnrichmentAgent:
    """Build an enrichment agent checking the declared genre against a catalogue."""

    async def check_genre_market(content: Content) -> AgentOutcome:
        questions = _section(content, "finalize").get("game_questions") or {}
        genre = str(questions.get("genre") or "").strip().lower()
        if not genre:
            return _advice("No genre declared; market check skipped")

        catalogue = await fetch_genres()
        names = {str(g.get("name", "")).strip().lower() for g in catalogue}
        if genre in names:
            return _ok(f"Genre '{genre}' is a recognised market category")
        return _advice(f"Genre '{genre}' is not a recognised market category")

    return check_genre_market
