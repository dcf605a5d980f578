"""Classification job orchestration and audit trail.

Every lot that goes through classification leaves this audit sequence::

    Enqueued            when the job is queued (producer side)
    Start               when the consumer picks the job up
    Success | Failure | Skipped

Skipped means the circuit breaker was open, so the provider was never
asked. Failure means the provider was asked and the call or its payload
failed. Neither is retried here; the recovery scheduler picks lots up again
later based on this trail.
"""
from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from lots_ingest.config import CLASSIFIER_SETTINGS
from lots_ingest.jobs.queue import BackgroundTaskQueue, DeferredJob, JobOutcome
from lots_ingest.models.db import AuditStatus, Lot
from lots_ingest.services.persistence import LotRepository
from lots_ingest.utils import get_logger
from lots_ingest.utils.circuit_breaker import CircuitBreakerOpenError

from .classifier import LotClassifier
from .prompts import describe_lot

if TYPE_CHECKING:  # pragma: no cover
    from lots_ingest.runtime import JobScope

logger = get_logger(__name__)

SKIPPED_DETAILS = "Circuit Breaker: API limit/balance"


def lot_prompt_text(lot: Lot) -> str:
    return describe_lot(
        lot.description or "",
        start_price=lot.start_price,
        cadastral_numbers=[c.cadastral_number for c in lot.cadastral_numbers],
    )


def _chunks(ids: list[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(ids), size):
        yield ids[i:i + size]


class ClassificationManager:
    def __init__(
        self,
        classifier: LotClassifier,
        queue: BackgroundTaskQueue,
        *,
        chunk_size: int | None = None,
    ) -> None:
        self.classifier = classifier
        self.queue = queue
        self.chunk_size = max(1, int(chunk_size or CLASSIFIER_SETTINGS["batch_chunk_size"]))

    # ----------------------------- producers ----------------------------- #
    def enqueue_lot(self, repository: LotRepository, lot: Lot, source: str) -> DeferredJob:
        """Write the Enqueued audit and queue a single-lot job.

        The prompt text is captured now so the job never touches ``lot``
        (which belongs to the producer's session).
        """
        lot_id = lot.id
        text = lot_prompt_text(lot)
        repository.add_audit(lot_id, AuditStatus.ENQUEUED, source)

        async def run(scope: "JobScope", stop_event: asyncio.Event) -> JobOutcome:
            return await self.classify_lot(scope.repository, lot_id, text, source)

        logger.info("Lot queued for classification", lot_id=lot_id, source=source)
        return self.queue.enqueue(DeferredJob(name="classify_lot", run=run, context={"lot_id": lot_id, "source": source}))

    def enqueue_batch(self, repository: LotRepository, lots: Iterable[Lot], source: str) -> DeferredJob | None:
        texts = {lot.id: lot_prompt_text(lot) for lot in lots}
        if not texts:
            return None
        repository.add_audits(list(texts), AuditStatus.ENQUEUED, source)

        async def run(scope: "JobScope", stop_event: asyncio.Event) -> JobOutcome:
            outcomes = await self.classify_batch(scope.repository, texts, source, stop_event=stop_event)
            if any(o is JobOutcome.SKIPPED for o in outcomes.values()):
                return JobOutcome.SKIPPED
            if outcomes and all(o is JobOutcome.FAILURE for o in outcomes.values()):
                return JobOutcome.FAILURE
            return JobOutcome.SUCCESS

        logger.info("Lot batch queued for classification", lots=len(texts), source=source)
        return self.queue.enqueue(DeferredJob(name="classify_batch", run=run, context={"lots": len(texts), "source": source}))

    # ----------------------------- job bodies ----------------------------- #
    async def classify_lot(self, repository: LotRepository, lot_id: str, lot_text: str, source: str) -> JobOutcome:
        repository.add_audit(lot_id, AuditStatus.START, source)
        try:
            result = await self.classifier.classify(lot_text)
            lot = repository.apply_classification(lot_id, result, source=source, model_version=self.classifier.model_version)
            if lot is None:
                repository.add_audit(lot_id, AuditStatus.FAILURE, source, details="Lot not found")
                return JobOutcome.FAILURE
        except CircuitBreakerOpenError as e:
            repository.session.rollback()
            repository.add_audit(lot_id, AuditStatus.SKIPPED, source, details=SKIPPED_DETAILS)
            logger.warning("Classification skipped; breaker open", lot_id=lot_id, open_until=e.open_until.isoformat())
            return JobOutcome.SKIPPED
        except Exception as e:
            repository.session.rollback()
            logger.error("Lot classification failed", lot_id=lot_id, source=source, error=str(e), exc_info=True)
            repository.add_audit(lot_id, AuditStatus.FAILURE, source, details=str(e) or type(e).__name__)
            return JobOutcome.FAILURE
        logger.info("Lot classified", lot_id=lot_id, categories=len(result.categories))
        return JobOutcome.SUCCESS

    async def classify_batch(
        self,
        repository: LotRepository,
        lots: Mapping[str, str],
        source: str,
        *,
        stop_event: Optional[asyncio.Event] = None,
    ) -> dict[str, JobOutcome]:
        """Classify ``lots`` (id -> prompt text) in provider-sized chunks.

        Once the breaker is seen open, that chunk and every later one are
        recorded Skipped without further provider calls.
        """
        outcomes: dict[str, JobOutcome] = {}
        ids = list(lots)
        for chunk in _chunks(ids, self.chunk_size):
            if stop_event is not None and stop_event.is_set():
                logger.info("Batch classification interrupted by shutdown", remaining=len(ids) - len(outcomes))
                break
            repository.add_audits(chunk, AuditStatus.START, source)
            try:
                results = await self.classifier.classify_batch({i: lots[i] for i in chunk})
            except CircuitBreakerOpenError as e:
                remaining = [i for i in ids if i not in outcomes]
                unstarted = [i for i in remaining if i not in chunk]
                repository.add_audits(chunk, AuditStatus.SKIPPED, source, details=SKIPPED_DETAILS)
                # Lots of later chunks get Start too so every Skipped row follows a Start
                if unstarted:
                    repository.add_audits(unstarted, AuditStatus.START, source)
                    repository.add_audits(unstarted, AuditStatus.SKIPPED, source, details=SKIPPED_DETAILS)
                for i in remaining:
                    outcomes[i] = JobOutcome.SKIPPED
                logger.warning(
                    "Batch classification skipped; breaker open",
                    skipped=len(remaining),
                    open_until=e.open_until.isoformat(),
                )
                break
            except Exception as e:
                logger.error("Batch classification call failed", lots=len(chunk), error=str(e), exc_info=True)
                repository.add_audits(chunk, AuditStatus.FAILURE, source, details=str(e) or type(e).__name__)
                for i in chunk:
                    outcomes[i] = JobOutcome.FAILURE
                continue

            for lot_id in chunk:
                result = results.get(lot_id)
                if result is None:
                    repository.add_audit(lot_id, AuditStatus.FAILURE, source, details="Missing from batch response")
                    outcomes[lot_id] = JobOutcome.FAILURE
                    continue
                try:
                    lot = repository.apply_classification(
                        lot_id, result, source=source, model_version=self.classifier.model_version
                    )
                except Exception as e:
                    repository.session.rollback()
                    logger.error("Saving classification failed", lot_id=lot_id, error=str(e), exc_info=True)
                    repository.add_audit(lot_id, AuditStatus.FAILURE, source, details=str(e) or type(e).__name__)
                    outcomes[lot_id] = JobOutcome.FAILURE
                    continue
                if lot is None:
                    repository.add_audit(lot_id, AuditStatus.FAILURE, source, details="Lot not found")
                    outcomes[lot_id] = JobOutcome.FAILURE
                else:
                    outcomes[lot_id] = JobOutcome.SUCCESS

        logger.info(
            "Batch classification finished",
            source=source,
            succeeded=sum(1 for o in outcomes.values() if o is JobOutcome.SUCCESS),
            failed=sum(1 for o in outcomes.values() if o is JobOutcome.FAILURE),
            skipped=sum(1 for o in outcomes.values() if o is JobOutcome.SKIPPED),
        )
        return outcomes


__all__ = ["ClassificationManager", "SKIPPED_DETAILS", "lot_prompt_text"]
