"""
Base Discovery Strategy for Repo Discovery

Provides common functionality for all discovery strategies:
- The Candidate record that flows from strategies to the merger
- Async context manager pattern
- Failure isolation: a strategy that raises yields zero candidates and an
  ERROR result instead of taking down the run
- Per-run statistics for operator logs

All strategies should inherit from BaseStrategy and implement:
- _discover(): Fetch candidates from one data source

Strategies are pure producers. They never write to persistent storage.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class Candidate:
    """
    A repository surfaced by one strategy, not yet deduplicated or scored.

    ``external_id`` is the stable numeric GitHub id when the source knows it.
    Forum mentions only know owner/name, so their id is None until the
    repository is resolved through the REST API.
    """
    external_id: Optional[int]
    owner: str
    name: str
    raw_metadata: Dict[str, Any] = field(default_factory=dict)
    source: str = "unknown"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def stars(self) -> int:
        return int(self.raw_metadata.get("stars") or 0)


class StrategyStatus(str, Enum):
    """Outcome of one strategy run."""
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    ERROR = "error"


@dataclass
class StrategyResult:
    """What one strategy produced in one pipeline run."""
    strategy: str
    status: StrategyStatus
    candidates: List[Candidate] = field(default_factory=list)
    units_failed: int = 0
    error_message: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def candidates_found(self) -> int:
        return len(self.candidates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "status": self.status.value,
            "candidates_found": self.candidates_found,
            "units_failed": self.units_failed,
            "error_message": self.error_message,
            "duration_seconds": round(self.duration_seconds, 2),
        }


# =============================================================================
# BASE STRATEGY
# =============================================================================

class BaseStrategy(ABC):
    """
    Base class for all discovery strategies.

    Usage:
        class MyStrategy(BaseStrategy):
            name = "my_source"

            async def _discover(self) -> List[Candidate]:
                return candidates

        result = await MyStrategy().run()
    """

    name: str = "unknown"

    def __init__(self) -> None:
        # Failed sub-units (one query, one archive hour) within a run
        self._units_failed = 0
        self._errors: List[str] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass

    @abstractmethod
    async def _discover(self) -> List[Candidate]:
        """
        Collect candidates from the source.

        Implementations should record recoverable per-unit failures through
        ``_record_unit_failure`` and keep going; anything that escapes is
        treated as a failure of the whole strategy.
        """

    def _record_unit_failure(self, unit: str, error: Any) -> None:
        message = f"{unit}: {error}"
        logger.warning(f"[{self.name}] {message}")
        self._units_failed += 1
        self._errors.append(message)

    async def run(self) -> StrategyResult:
        """Run the strategy; never raises."""
        logger.info(f"Starting {self.name} strategy")
        self._units_failed = 0
        self._errors = []
        started = time.monotonic()

        try:
            async with self:
                candidates = await self._discover()
        except Exception as e:
            logger.exception(f"{self.name} strategy failed")
            return StrategyResult(
                strategy=self.name,
                status=StrategyStatus.ERROR,
                units_failed=self._units_failed + 1,
                error_message=f"{type(e).__name__}: {e}",
                duration_seconds=time.monotonic() - started,
            )

        for candidate in candidates:
            candidate.source = self.name

        status = StrategyStatus.PARTIAL_SUCCESS if self._errors else StrategyStatus.SUCCESS
        logger.info(
            f"{self.name} strategy found {len(candidates)} candidates "
            f"({self._units_failed} failed units)"
        )
        return StrategyResult(
            strategy=self.name,
            status=status,
            candidates=candidates,
            units_failed=self._units_failed,
            error_message="; ".join(self._errors[:5]) if self._errors else None,
            duration_seconds=time.monotonic() - started,
        )
