import asyncio
import json

from conftest import FakeChatClient, audit_statuses
from lots_ingest.jobs.queue import BackgroundTaskQueue, JobOutcome
from lots_ingest.models.db import AuditStatus, LotAuditEvent, LotClassificationAnalysis
from lots_ingest.runtime import JobScope
from lots_ingest.services.classification import ClassificationManager, LotClassifier, PaymentRequiredError
from lots_ingest.services.classification.manager import SKIPPED_DETAILS, lot_prompt_text
from lots_ingest.services.persistence import LotRepository
from lots_ingest.utils.circuit_breaker import BreakerCause, CircuitBreaker
from lots_ingest.utils.throttle import RequestThrottle

E, S, OK, F, SK = AuditStatus.ENQUEUED, AuditStatus.START, AuditStatus.SUCCESS, AuditStatus.FAILURE, AuditStatus.SKIPPED


def make_manager(*responses, chunk_size=2, breaker=None):
    chat = FakeChatClient(responses)
    classifier = LotClassifier(chat, RequestThrottle(0), breaker or CircuitBreaker())
    return ClassificationManager(classifier, BackgroundTaskQueue("classification"), chunk_size=chunk_size), chat


def answer(categories=("Квартира",), **extra):
    body = {"categories": list(categories), "title": "Квартира", "isSharedOwnership": False}
    body.update(extra)
    return body


def test_enqueued_job_runs_to_success(db_session, lot_factory):
    lot = lot_factory(cadastral_numbers=["50:10:0010203:45"])
    manager, chat = make_manager(json.dumps(answer(propertyRegionCode=77, propertyRegionName="Москва"), ensure_ascii=False))
    repo = LotRepository(db_session)

    job = manager.enqueue_lot(repo, lot, "Test")
    assert manager.queue.depth() == 1
    assert audit_statuses(db_session, lot.id) == [E]

    outcome = asyncio.run(job.run(JobScope(session=db_session, repository=repo, container=None), asyncio.Event()))

    assert outcome is JobOutcome.SUCCESS
    assert audit_statuses(db_session, lot.id) == [E, S, OK]
    db_session.refresh(lot)
    assert [c.name for c in lot.categories] == ["Квартира"]
    assert lot.property_region_code == "77"
    analysis = db_session.query(LotClassificationAnalysis).filter_by(lot_id=lot.id).one()
    assert analysis.model_version == "fake-model"
    assert "50:10:0010203:45" in chat.calls[0][-1]["content"]


def test_reclassification_does_not_duplicate_categories(db_session, lot_factory):
    lot = lot_factory(categories=["Квартира"])
    manager, _ = make_manager(json.dumps(answer(["квартира", "Жилой дом"]), ensure_ascii=False))
    outcome = asyncio.run(manager.classify_lot(LotRepository(db_session), lot.id, lot_prompt_text(lot), "Test"))
    assert outcome is JobOutcome.SUCCESS
    db_session.refresh(lot)
    assert sorted(c.name for c in lot.categories) == ["Жилой дом", "Квартира"]


def test_open_breaker_records_skipped(db_session, lot_factory):
    lot = lot_factory()
    breaker = CircuitBreaker()
    breaker.trip(BreakerCause.PAYMENT_REQUIRED)
    manager, chat = make_manager(breaker=breaker)

    outcome = asyncio.run(manager.classify_lot(LotRepository(db_session), lot.id, "text", "Test"))

    assert outcome is JobOutcome.SKIPPED
    assert audit_statuses(db_session, lot.id) == [S, SK]
    skipped = db_session.query(LotAuditEvent).filter_by(lot_id=lot.id, status=SK).one()
    assert skipped.details == SKIPPED_DETAILS
    assert chat.calls == []


def test_bad_payload_records_failure(db_session, lot_factory):
    lot = lot_factory()
    manager, _ = make_manager("garbage")
    outcome = asyncio.run(manager.classify_lot(LotRepository(db_session), lot.id, "text", "Test"))
    assert outcome is JobOutcome.FAILURE
    assert audit_statuses(db_session, lot.id) == [S, F]


def test_missing_lot_is_failure(db_session):
    manager, _ = make_manager(json.dumps(answer(), ensure_ascii=False))
    outcome = asyncio.run(manager.classify_lot(LotRepository(db_session), "gone", "text", "Test"))
    assert outcome is JobOutcome.FAILURE
    assert audit_statuses(db_session, "gone") == [S, F]


def test_batch_outage_skips_every_remaining_lot(db_session, lot_factory):
    lots = [lot_factory(f"Лот {i}") for i in range(5)]
    manager, chat = make_manager(PaymentRequiredError(), chunk_size=2)
    repo = LotRepository(db_session)

    job = manager.enqueue_batch(repo, lots, "Recovery")
    outcome = asyncio.run(job.run(JobScope(session=db_session, repository=repo, container=None), asyncio.Event()))

    assert outcome is JobOutcome.SKIPPED
    assert len(chat.calls) == 1
    for lot in lots:
        assert audit_statuses(db_session, lot.id) == [E, S, SK]
    assert manager.classifier.breaker.is_open()


def test_batch_chunks_and_missing_ids(db_session, lot_factory):
    a, b, c = (lot_factory(f"Лот {i}") for i in range(3))
    first_chunk = json.dumps({a.id: answer(), "someone-else": answer()}, ensure_ascii=False)
    second_chunk = json.dumps(answer(["Жилой дом"]), ensure_ascii=False)
    manager, chat = make_manager(first_chunk, second_chunk, chunk_size=2)
    repo = LotRepository(db_session)

    texts = {lot.id: lot_prompt_text(lot) for lot in (a, b, c)}
    outcomes = asyncio.run(manager.classify_batch(repo, texts, "Recovery"))

    assert outcomes == {a.id: JobOutcome.SUCCESS, b.id: JobOutcome.FAILURE, c.id: JobOutcome.SUCCESS}
    assert len(chat.calls) == 2
    assert audit_statuses(db_session, a.id) == [S, OK]
    assert audit_statuses(db_session, b.id) == [S, F]
    assert audit_statuses(db_session, c.id) == [S, OK]
    missing = db_session.query(LotAuditEvent).filter_by(lot_id=b.id, status=F).one()
    assert missing.details == "Missing from batch response"


def test_batch_stops_on_shutdown(db_session, lot_factory):
    lots = [lot_factory(f"Лот {i}") for i in range(2)]
    manager, chat = make_manager()
    stop = asyncio.Event()
    stop.set()
    outcomes = asyncio.run(
        manager.classify_batch(LotRepository(db_session), {l.id: "x" for l in lots}, "Recovery", stop_event=stop)
    )
    assert outcomes == {}
    assert chat.calls == []


def test_enqueue_batch_without_lots_queues_nothing(db_session):
    manager, _ = make_manager()
    assert manager.enqueue_batch(LotRepository(db_session), [], "Recovery") is None
    assert manager.queue.depth() == 0
