import asyncio
import json

import pytest

from conftest import FakeCoordinatesClient, audit_statuses
from lots_ingest.jobs.queue import BackgroundTaskQueue, JobOutcome
from lots_ingest.models.db import AuditEventType, AuditStatus, LotAuditEvent
from lots_ingest.services.coordinates import (
    Coordinates,
    CoordinateService,
    CoordinateServiceUnavailable,
    CoordinatesNotFound,
    read_coordinates,
)
from lots_ingest.services.persistence import LotRepository

N1 = "50:10:0010203:45"
N2 = "77:01:0001001:1001"
COORDS = AuditEventType.COORDINATES


def make_service(answers):
    client = FakeCoordinatesClient(answers)
    return CoordinateService(client, BackgroundTaskQueue("coordinates")), client


def test_first_resolving_number_wins():
    service, client = make_service({N1: Coordinates(55.75, 37.61), N2: Coordinates(1.0, 2.0)})
    outcome = asyncio.run(service.find_first(["", N1, N2]))
    assert outcome.coordinates == Coordinates(55.75, 37.61)
    assert client.calls == [N1]


def test_not_found_falls_through_to_next_number():
    service, client = make_service({N2: Coordinates(1.0, 2.0)})
    outcome = asyncio.run(service.find_first([N1, N2]))
    assert outcome.coordinates == Coordinates(1.0, 2.0)
    assert not outcome.unavailable
    assert client.calls == [N1, N2]


def test_enrich_writes_coordinates_and_success_audit(db_session, lot_factory):
    lot = lot_factory(cadastral_numbers=[N1])
    service, _ = make_service({N1: Coordinates(55.75, 37.61)})

    outcome = asyncio.run(service.enrich_lot(LotRepository(db_session), lot.id, [N1], "Test"))

    assert outcome is JobOutcome.SUCCESS
    db_session.refresh(lot)
    assert (lot.latitude, lot.longitude) == (55.75, 37.61)
    assert audit_statuses(db_session, lot.id, COORDS) == [AuditStatus.SUCCESS]
    assert audit_statuses(db_session, lot.id) == []


def test_existing_coordinates_kept_unless_forced(db_session, lot_factory):
    lot = lot_factory(cadastral_numbers=[N1])
    repo = LotRepository(db_session)
    repo.set_coordinates(lot.id, 10.0, 20.0)
    service, _ = make_service({N1: Coordinates(55.75, 37.61)})

    asyncio.run(service.enrich_lot(repo, lot.id, [N1], "Test"))
    db_session.refresh(lot)
    assert lot.latitude == 10.0

    asyncio.run(service.enrich_lot(repo, lot.id, [N1], "Api", force=True))
    db_session.refresh(lot)
    assert lot.latitude == 55.75


def test_not_found_everywhere_is_final_failure(db_session, lot_factory):
    lot = lot_factory()
    service, _ = make_service({})
    outcome = asyncio.run(service.enrich_lot(LotRepository(db_session), lot.id, [N1], "Test"))
    assert outcome is JobOutcome.FAILURE
    assert service.retry_list_size() == 0
    event = db_session.query(LotAuditEvent).filter_by(lot_id=lot.id).one()
    assert event.details == "No coordinates found"


def test_unavailable_service_parks_lot_for_retry(db_session, lot_factory):
    lot = lot_factory()
    service, _ = make_service({N1: CoordinateServiceUnavailable("timeout")})
    repo = LotRepository(db_session)

    outcome = asyncio.run(service.enrich_lot(repo, lot.id, [N1], "Test"))

    assert outcome is JobOutcome.FAILURE
    assert service.retry_list_size() == 1

    assert service.reprocess_retry_list() == 1
    assert service.retry_list_size() == 0
    assert service.queue.depth() == 1

    job = asyncio.run(service.queue.dequeue())
    assert job.context["source"] == "CoordinatesRetry"


def test_enqueue_without_numbers_is_noop():
    service, _ = make_service({})
    assert service.enqueue_lot("lot", ["", None], "Test") is None
    assert service.queue.depth() == 0


class FakeResponse:
    def __init__(self, status=200, body="[55.75, 37.61]"):
        self.status = status
        self.body = body

    async def json(self, content_type="application/json"):
        return json.loads(self.body)


class ResponseClient:
    """Lookup client that runs canned responses through the real response mapping."""

    def __init__(self, responses):
        self.responses = responses

    async def lookup(self, cadastral_number):
        return await read_coordinates(self.responses[cadastral_number], cadastral_number)


def test_response_mapping():
    assert asyncio.run(read_coordinates(FakeResponse(), N1)) == Coordinates(55.75, 37.61)
    with pytest.raises(CoordinatesNotFound):
        asyncio.run(read_coordinates(FakeResponse(404), N1))
    for response in (FakeResponse(503), FakeResponse(body="<html>oops</html>"), FakeResponse(body='{"lat": 1}')):
        with pytest.raises(CoordinateServiceUnavailable):
            asyncio.run(read_coordinates(response, N1))


def test_malformed_json_parks_lot_for_retry(db_session, lot_factory):
    lot = lot_factory()
    client = ResponseClient({N1: FakeResponse(body="not json")})
    service = CoordinateService(client, BackgroundTaskQueue("coordinates"))

    outcome = asyncio.run(service.enrich_lot(LotRepository(db_session), lot.id, [N1], "Test"))

    assert outcome is JobOutcome.FAILURE
    assert service.retry_list_size() == 1
    assert audit_statuses(db_session, lot.id, COORDS)[-1] == AuditStatus.FAILURE
