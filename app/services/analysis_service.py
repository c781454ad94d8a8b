"""
Niche / problem / solution generation on top of the throttled orchestrator.

Public API
----------
NicheAnalysisService.get_niches(exclude_niches, batch)            -> Dict
NicheAnalysisService.get_problems(niche, exclude_titles)          -> List[Dict]
NicheAnalysisService.get_solution(niche, problem)                 -> str
NicheAnalysisService.expand_solution(niche, problem, current)     -> str
NicheAnalysisService.probe()                                      -> str
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.config import Settings, settings as default_settings
from app.services import prompts
from app.services.orchestrator import ThrottledBatchOrchestrator
from app.services.sanitizer import (
    NICHES,
    PROBLEMS,
    dedupe_by,
    select_best_solution,
)
from app.utils.helpers import normalize_key, strip_html

logger = logging.getLogger(__name__)

# Upper bound on the excluded names echoed back into a prompt
MAX_EXCLUDED_IN_PROMPT = 40


class NicheAnalysisService:
    """Implements the /api/analyze actions."""

    def __init__(
        self,
        orchestrator: ThrottledBatchOrchestrator,
        cfg: Optional[Settings] = None,
    ) -> None:
        cfg = cfg or default_settings
        self.orchestrator = orchestrator
        self.categories: List[str] = cfg.get_niche_categories()
        self.niches_per_category = cfg.NICHES_PER_CATEGORY
        self.problems_per_request = cfg.PROBLEMS_PER_REQUEST
        self.solution_candidates = cfg.SOLUTION_CANDIDATES

    # ------------------------------------------------------------------
    # Niches
    # ------------------------------------------------------------------

    async def get_niches(
        self,
        exclude_niches: Sequence[str] = (),
        batch: int = 1,
    ) -> Dict[str, Any]:
        """
        One prompt per category, batched through the orchestrator.

        Results are deduplicated by ``name`` and anything in *exclude_niches*
        is dropped (case-insensitive).  Never returns an empty niche list.
        """
        exclude_clause = ""
        if exclude_niches:
            exclude_clause = prompts.NICHES_EXCLUDE_CLAUSE.format(
                names=", ".join(list(exclude_niches)[:MAX_EXCLUDED_IN_PROMPT])
            )

        niche_prompts = [
            prompts.NICHES_PROMPT.format(
                count=self.niches_per_category,
                category=category,
                batch=batch,
                exclude_clause=exclude_clause,
            )
            for category in self.categories
        ]

        per_category = await self.orchestrator.generate_structured_many(
            niche_prompts, NICHES
        )
        merged = [niche for group in per_category for niche in group]
        niches = _drop_excluded(dedupe_by(merged, NICHES.id_field), NICHES.id_field, exclude_niches)

        if not niches:
            logger.warning("get_niches: nothing left after exclusion; using fallback")
            niches = NICHES.fallback

        logger.info(
            "get_niches: %d niches across %d categories (batch %d)",
            len(niches),
            len(self.categories),
            batch,
        )
        return {"categories": list(self.categories), "niches": niches}

    # ------------------------------------------------------------------
    # Problems
    # ------------------------------------------------------------------

    async def get_problems(
        self,
        niche: str,
        exclude_titles: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """Generate problems for *niche*, skipping titles the caller already has."""
        exclude_clause = ""
        if exclude_titles:
            exclude_clause = prompts.PROBLEMS_EXCLUDE_CLAUSE.format(
                titles=", ".join(list(exclude_titles)[:MAX_EXCLUDED_IN_PROMPT])
            )

        prompt = prompts.PROBLEMS_PROMPT.format(
            count=self.problems_per_request,
            niche=niche,
            exclude_clause=exclude_clause,
        )
        raw = await self.orchestrator.generate_structured(prompt, PROBLEMS)
        problems = _drop_excluded(dedupe_by(raw, PROBLEMS.id_field), PROBLEMS.id_field, exclude_titles)

        if not problems:
            logger.warning("get_problems: nothing left after exclusion; using fallback")
            problems = PROBLEMS.fallback

        logger.info("get_problems: %d problems for niche %r", len(problems), niche)
        return problems

    # ------------------------------------------------------------------
    # Solutions
    # ------------------------------------------------------------------

    async def get_solution(self, niche: str, problem: str) -> str:
        """Best-of-N solution guide for *problem* within *niche*."""
        prompt = prompts.SOLUTION_PROMPT.format(niche=niche, problem=problem)
        candidates = await self.orchestrator.generate_candidates(
            prompt, self.solution_candidates
        )
        cleaned = [c for c in (strip_html(c) for c in candidates) if c]
        if not cleaned:
            logger.warning("get_solution: no usable candidates; using fallback guide")
            return prompts.FALLBACK_SOLUTION

        best = select_best_solution(cleaned)
        logger.info(
            "get_solution: picked %d-char guide from %d candidates",
            len(best),
            len(cleaned),
        )
        return best

    async def expand_solution(
        self,
        niche: str,
        problem: str,
        current_solution: str,
    ) -> str:
        """Additional guide content that continues *current_solution*."""
        prompt = prompts.EXPAND_SOLUTION_PROMPT.format(
            niche=niche,
            problem=problem,
            current_solution=current_solution,
        )
        text = strip_html(await self.orchestrator.generate_text(prompt))
        return text or prompts.FALLBACK_EXPANSION

    async def probe(self) -> str:
        """Live round-trip through the scheduler, used by the health router."""
        return await self.orchestrator.generate_text(prompts.HEALTH_PROBE_PROMPT)


def _drop_excluded(
    entries: List[Dict[str, Any]],
    field: str,
    excluded: Iterable[str],
) -> List[Dict[str, Any]]:
    excluded_keys = {normalize_key(e) for e in excluded if e}
    if not excluded_keys:
        return entries
    return [e for e in entries if normalize_key(e.get(field, "")) not in excluded_keys]
