"""
Enrichment and Re-score Policy

The enrichment collaborator turns repository facts plus a score into
``{summary, rationale, category}``. It is expensive (a text model in
production), so its output is cached per repository and only refreshed
when the cache is stale.

Per-repository state machine:

    MISSING --enrich--> FRESH --(|cached - new| > threshold)--> STALE --enrich--> FRESH

- MISSING / STALE: call the enricher, then upsert the full record.
- FRESH: skip the enricher, but still write the new score and breakdown.
  The score never goes stale even when the text does.

Repository counters, score and enrichment are committed in one
transaction per repository.

Usage:
    policy = ReScorePolicy(store, CategoryEnricher(), threshold=10)
    outcome = await policy.apply(record, facts, score_result)
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from scoring.early_signal import ScoreResult
from storage.repo_store import RepoStore, RepositoryRecord, StoredEnrichment

logger = logging.getLogger(__name__)


# =============================================================================
# CATEGORIES
# =============================================================================

CATEGORIES: List[str] = [
    "AI / Machine Learning",
    "Developer Tools",
    "Security",
    "Data & Analytics",
    "Web Frameworks",
    "Infrastructure & DevOps",
    "Mobile",
    "Open Source Utilities",
]

# Search category slug -> directory category
CATEGORY_BY_SLUG: Dict[str, str] = {
    "ai-ml": "AI / Machine Learning",
    "developer-tools": "Developer Tools",
    "security": "Security",
    "data-analytics": "Data & Analytics",
    "web-frameworks": "Web Frameworks",
    "infrastructure-devops": "Infrastructure & DevOps",
    "mobile": "Mobile",
    "open-source-utilities": "Open Source Utilities",
}

DEFAULT_CATEGORY = "Open Source Utilities"

# Checked in order; first category with a keyword hit wins
CATEGORY_KEYWORDS: List[tuple] = [
    ("AI / Machine Learning", ("llm", "machine-learning", "machine learning", "deep-learning", "neural",
                               "gpt", "agent", "rag", "transformer", "diffusion", "ai")),
    ("Security", ("security", "cybersecurity", "vulnerability", "pentest", "penetration", "crypto", "privacy")),
    ("Mobile", ("ios", "android", "react-native", "flutter", "mobile", "swiftui")),
    ("Infrastructure & DevOps", ("kubernetes", "docker", "devops", "terraform", "infrastructure", "cloud", "k8s")),
    ("Data & Analytics", ("database", "analytics", "data-science", "etl", "sql", "visualization", "dataframe")),
    ("Web Frameworks", ("web-framework", "frontend", "backend", "fullstack", "react", "vue", "svelte", "http")),
    ("Developer Tools", ("developer-tools", "devtools", "cli", "editor", "ide", "lsp", "linter", "compiler")),
]

# Languages with an unambiguous category when nothing else matches
CATEGORY_BY_LANGUAGE: Dict[str, str] = {
    "Swift": "Mobile",
    "Kotlin": "Mobile",
    "Dart": "Mobile",
    "HCL": "Infrastructure & DevOps",
    "Jupyter Notebook": "AI / Machine Learning",
}


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class RepoFacts:
    """What the enricher is told about a repository."""
    owner: str
    name: str
    description: Optional[str] = None
    language: Optional[str] = None
    stars: int = 0
    forks: int = 0
    contributors: int = 0
    topics: List[str] = field(default_factory=list)
    category_hint: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class EnrichmentResult:
    summary: str
    rationale: str
    category: str


class Enricher(Protocol):
    """Enrichment collaborator. Must be safe to call repeatedly."""

    async def enrich(self, facts: RepoFacts, score: int) -> EnrichmentResult:
        ...


def parse_enrichment_response(text: str) -> EnrichmentResult:
    """
    Validate a JSON text reply from a text model.

    Code fences are stripped. ``rationale`` may also arrive as
    ``why_it_matters``.

    Raises:
        ValueError: not JSON, missing fields, or unknown category
    """
    cleaned = re.sub(r"```(?:json)?\n?", "", text).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValueError(f"Enrichment reply is not JSON: {e}")
    if not isinstance(parsed, dict):
        raise ValueError("Enrichment reply is not a JSON object")

    def text_field(*keys: str) -> str:
        for key in keys:
            value = parsed.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return ""

    summary = text_field("summary")
    rationale = text_field("rationale", "why_it_matters")
    category = text_field("category")

    if category not in CATEGORIES:
        raise ValueError(f"Invalid category {category!r}. Expected one of: {', '.join(CATEGORIES)}")
    if not summary or not rationale:
        raise ValueError("Missing summary or rationale in enrichment reply")

    return EnrichmentResult(summary=summary, rationale=rationale, category=category)


# =============================================================================
# OFFLINE ENRICHER
# =============================================================================

def infer_category(facts: RepoFacts) -> str:
    if facts.category_hint in CATEGORY_BY_SLUG:
        return CATEGORY_BY_SLUG[facts.category_hint]

    haystack = " ".join([*(t.lower() for t in facts.topics), (facts.description or "").lower()])
    words = set(re.findall(r"[a-z0-9][a-z0-9+#.-]*", haystack))
    for category, keywords in CATEGORY_KEYWORDS:
        if any(k in words or (("-" in k or " " in k) and k in haystack) for k in keywords):
            return category

    return CATEGORY_BY_LANGUAGE.get(facts.language or "", DEFAULT_CATEGORY)


class CategoryEnricher:
    """
    Deterministic enricher used when no text model is wired in.

    Category comes from the discovering search category when there is one,
    then topic/description keywords, then language. Summary and rationale
    are composed from the repository facts.
    """

    async def enrich(self, facts: RepoFacts, score: int) -> EnrichmentResult:
        category = infer_category(facts)
        description = (facts.description or "").strip().rstrip(".")
        language = facts.language or "multi-language"

        if description:
            summary = f"{facts.full_name} is a {language} project: {description}."
        else:
            summary = f"{facts.full_name} is a {language} project without a published description."

        rationale = (
            f"It scores {score}/100 on early growth signals with {facts.stars:,} stars, "
            f"{facts.forks:,} forks and {facts.contributors:,} contributors."
        )
        return EnrichmentResult(summary=summary, rationale=rationale, category=category)


# =============================================================================
# RE-SCORE POLICY
# =============================================================================

class EnrichmentState(str, Enum):
    MISSING = "missing"
    FRESH = "fresh"
    STALE = "stale"


class PolicyAction(str, Enum):
    ENRICHED = "enriched"            # enricher called, full record written
    SCORE_ONLY = "score_only"        # cached text kept, score refreshed
    ENRICH_FAILED = "enrich_failed"  # enricher failed; counters and any cached score refreshed


@dataclass
class PolicyOutcome:
    repo_id: int
    state: EnrichmentState
    action: PolicyAction
    score: int
    previous_score: Optional[int] = None


def classify_enrichment(
    existing: Optional[StoredEnrichment],
    new_score: int,
    threshold: int = 10,
) -> EnrichmentState:
    """A cached record goes stale when the score moved by more than ``threshold``."""
    if existing is None:
        return EnrichmentState.MISSING
    if abs(existing.score - new_score) > threshold:
        return EnrichmentState.STALE
    return EnrichmentState.FRESH


class ReScorePolicy:
    """Decides per repository whether to re-enrich, then commits the outcome."""

    def __init__(self, store: RepoStore, enricher: Enricher, threshold: int = 10):
        self.store = store
        self.enricher = enricher
        self.threshold = threshold

    async def _existing_enrichment(self, github_id: int) -> Optional[StoredEnrichment]:
        stored = await self.store.get_repositories_by_github_ids([github_id])
        repo = stored.get(github_id)
        if repo is None:
            return None
        return await self.store.get_enrichment(repo.id)

    async def apply(self, record: RepositoryRecord, facts: RepoFacts, result: ScoreResult) -> PolicyOutcome:
        existing = await self._existing_enrichment(record.github_id)
        state = classify_enrichment(existing, result.score, self.threshold)
        breakdown: Dict[str, Any] = result.breakdown.to_dict()
        previous = existing.score if existing else None
        label = facts.full_name

        if state == EnrichmentState.FRESH:
            repo_id = await self.store.save_scored_repository(record, result.score, breakdown)
            logger.info(f"{label} score {previous} -> {result.score} (no re-enrichment needed)")
            return PolicyOutcome(repo_id, state, PolicyAction.SCORE_ONLY, result.score, previous)

        try:
            enriched = await self.enricher.enrich(facts, result.score)
        except Exception as e:
            # The enricher is an external collaborator; its failure costs one repository
            logger.exception(f"{label} enrichment failed: {e}")
            repo_id = await self.store.save_scored_repository(record, result.score, breakdown)
            return PolicyOutcome(repo_id, state, PolicyAction.ENRICH_FAILED, result.score, previous)

        repo_id = await self.store.save_scored_repository(
            record,
            result.score,
            breakdown,
            enrichment=StoredEnrichment(
                repo_id=0,
                summary=enriched.summary,
                rationale=enriched.rationale,
                category=enriched.category,
                score=result.score,
            ),
        )
        logger.info(f"{label} enriched ({state.value}, score {previous} -> {result.score}, {enriched.category})")
        return PolicyOutcome(repo_id, state, PolicyAction.ENRICHED, result.score, previous)
