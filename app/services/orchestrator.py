"""
Throttled batch call orchestrator.

Glues the three pieces together for callers that need generated content:

    prompts ──► run_batches ──► QueueScheduler.submit(generator.generate)
                                        │
                                        ▼
                               sanitize_and_parse ──► structured results

The orchestrator is built explicitly (see ``build_orchestrator``) and handed to
whoever needs it; nothing here is a module-level singleton.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar

from app.config import Settings, settings as default_settings
from app.services.batch_runner import run_batches
from app.services.gemini_client import GeminiClient, TextGenerator
from app.services.queue_scheduler import QueueScheduler
from app.services.sanitizer import ExpectedShape, sanitize_and_parse

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestTimeoutError(Exception):
    """A caller-side deadline expired before the work finished."""

    def __init__(self, seconds: float) -> None:
        super().__init__(f"Request timeout after {seconds:.1f} s")
        self.seconds = seconds


async def with_deadline(awaitable: Awaitable[T], seconds: float) -> T:
    """
    Race *awaitable* against a wall-clock deadline.

    On expiry the awaiting task is cancelled: queued scheduler entries it was
    waiting on are skipped, while an upstream call already in flight finishes
    on its own and its result is dropped.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        logger.warning("Deadline of %.1f s exceeded", seconds)
        raise RequestTimeoutError(seconds) from exc


class ThrottledBatchOrchestrator:
    """Rate-limited, retrying, batch-oriented access to a text generator."""

    def __init__(
        self,
        generator: TextGenerator,
        scheduler: QueueScheduler,
        batch_size: int = 2,
        batch_pause: float = 1.0,
    ) -> None:
        self.generator = generator
        self.scheduler = scheduler
        self.batch_size = batch_size
        self.batch_pause = batch_pause

    async def generate_text(self, prompt: str) -> str:
        """One throttled generator call.  Upstream errors propagate."""
        return await self.scheduler.submit(lambda: self.generator.generate(prompt))

    async def generate_structured(
        self, prompt: str, shape: ExpectedShape
    ) -> List[Dict[str, Any]]:
        """Generate and sanitize.  Parse failures are absorbed, call failures are not."""
        raw = await self.generate_text(prompt)
        return sanitize_and_parse(raw, shape)

    async def generate_structured_many(
        self, prompts: Sequence[str], shape: ExpectedShape
    ) -> List[List[Dict[str, Any]]]:
        """
        Run *prompts* through the batch runner, one sanitized list per prompt.

        A failed item contributes ``shape.fallback`` so its siblings are not
        lost.  If every item failed, the first error is raised instead:
        all-fallback output would hide a dead upstream.
        """
        errors: List[Exception] = []

        async def _process(prompt: str) -> List[Dict[str, Any]]:
            try:
                return await self.generate_structured(prompt, shape)
            except Exception as exc:
                logger.error("generate_structured_many: item failed: %s", exc)
                errors.append(exc)
                return shape.fallback

        results = await run_batches(
            list(prompts), self.batch_size, _process, pause=self.batch_pause
        )
        if prompts and len(errors) == len(prompts):
            raise errors[0]
        return results

    async def generate_candidates(self, prompt: str, count: int) -> List[str]:
        """
        Produce up to *count* independent texts for the same prompt.

        Failed or empty candidates are dropped; if nothing was produced and
        at least one call failed, that error is raised.
        """
        errors: List[Exception] = []

        async def _process(_index: int) -> Optional[str]:
            try:
                return await self.generate_text(prompt)
            except Exception as exc:
                logger.error("generate_candidates: candidate failed: %s", exc)
                errors.append(exc)
                return None

        results = await run_batches(
            list(range(count)), self.batch_size, _process, pause=self.batch_pause
        )
        candidates = [r for r in results if r and r.strip()]
        if not candidates and errors:
            raise errors[0]
        return candidates

    async def close(self) -> None:
        await self.scheduler.close()


def build_orchestrator(
    cfg: Optional[Settings] = None,
    generator: Optional[TextGenerator] = None,
) -> ThrottledBatchOrchestrator:
    """Construct an orchestrator (and its scheduler) from settings."""
    cfg = cfg or default_settings
    scheduler = QueueScheduler(
        min_delay=cfg.MIN_CALL_DELAY_MS / 1000.0,
        retry_policy=cfg.retry_policy(),
    )
    return ThrottledBatchOrchestrator(
        generator=generator or GeminiClient(),
        scheduler=scheduler,
        batch_size=cfg.BATCH_SIZE,
        batch_pause=cfg.BATCH_PAUSE_MS / 1000.0,
    )
