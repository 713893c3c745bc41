"""
Candidate Merger

Folds the candidate lists of all strategies into one deduplicated list.
Strategy results are consumed in the order given (the fixed strategy run
order), and the first sighting of a repository wins: later, possibly
sparser, sightings never overwrite its metadata.

A repository is the same when its numeric id matches, or, for candidates
that only carry owner/name, when the lowercased owner/name matches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from collectors.base import Candidate, StrategyResult

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    candidates: List[Candidate] = field(default_factory=list)
    # strategy name -> candidates it contributed that no earlier strategy had
    unique_by_strategy: Dict[str, int] = field(default_factory=dict)
    duplicates: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "merged": len(self.candidates),
            "duplicates": self.duplicates,
            "unique_by_strategy": dict(self.unique_by_strategy),
        }


def merge_candidates(results: Sequence[StrategyResult]) -> MergeResult:
    """Deduplicate candidates across strategy results, first occurrence wins."""
    merged = MergeResult()
    seen_ids: Dict[int, Candidate] = {}
    seen_names: Dict[str, Candidate] = {}

    for result in results:
        merged.unique_by_strategy.setdefault(result.strategy, 0)

        for candidate in result.candidates:
            name_key = candidate.full_name.lower()
            if candidate.external_id is not None and candidate.external_id in seen_ids:
                merged.duplicates += 1
                continue
            if name_key in seen_names:
                existing = seen_names[name_key]
                # A name-only sighting learns the id, metadata stays first-seen
                if existing.external_id is None and candidate.external_id is not None:
                    existing.external_id = candidate.external_id
                    seen_ids[candidate.external_id] = existing
                merged.duplicates += 1
                continue

            merged.candidates.append(candidate)
            seen_names[name_key] = candidate
            if candidate.external_id is not None:
                seen_ids[candidate.external_id] = candidate
            merged.unique_by_strategy[result.strategy] += 1

    for strategy, count in merged.unique_by_strategy.items():
        logger.info(f"  {strategy}: {count} unique candidates")
    logger.info(f"Merged {len(merged.candidates)} candidates ({merged.duplicates} duplicates dropped)")

    return merged
