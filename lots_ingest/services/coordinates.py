"""Cadastral number -> (latitude, longitude) lookup.

The lookup service answers ``GET {base}/coordinates/{number}`` with a JSON
``[lat, lon]`` array. A 404 means the parcel has no coordinates and is final
for that number; anything else that fails is "service unavailable" and the
lot is kept on a retry list for a later reprocessing pass.

Lookups run as jobs on the dedicated coordinates queue, whose consumer
pauses between jobs so the downstream service sees a slow, even stream.
"""
from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional, Protocol
from urllib.parse import quote

import aiohttp

from lots_ingest.config import COORDINATES_SETTINGS
from lots_ingest.jobs.queue import BackgroundTaskQueue, DeferredJob, JobOutcome
from lots_ingest.models.db import AuditEventType, AuditStatus
from lots_ingest.services.persistence import LotRepository
from lots_ingest.utils import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from lots_ingest.runtime import JobScope

logger = get_logger(__name__)


class CoordinatesNotFound(Exception):
    """The service has no coordinates for this cadastral number (404)."""


class CoordinateServiceUnavailable(Exception):
    """The service could not answer (network error, timeout, non-404 error status)."""


@dataclass(slots=True, frozen=True)
class Coordinates:
    latitude: float
    longitude: float


class CoordinatesLookup(Protocol):
    async def lookup(self, cadastral_number: str) -> Coordinates: ...


async def read_coordinates(response, cadastral_number: str) -> Coordinates:
    """Map a lookup response onto ``Coordinates`` or one of the two lookup errors."""
    if response.status == 404:
        raise CoordinatesNotFound(cadastral_number)
    if response.status >= 400:
        raise CoordinateServiceUnavailable(f"HTTP {response.status} for {cadastral_number}")
    try:
        data = await response.json(content_type=None)
    except ValueError as e:
        # malformed JSON or an undecodable body
        raise CoordinateServiceUnavailable(f"invalid JSON for {cadastral_number}") from e
    if not isinstance(data, list) or len(data) != 2:
        raise CoordinateServiceUnavailable(f"unexpected payload for {cadastral_number}")
    try:
        return Coordinates(latitude=float(data[0]), longitude=float(data[1]))
    except (TypeError, ValueError) as e:
        raise CoordinateServiceUnavailable(f"non-numeric payload for {cadastral_number}") from e


class CoordinatesClient:
    def __init__(self, *, base_url: str | None = None, timeout_seconds: float | None = None) -> None:
        self.base_url = str(base_url or COORDINATES_SETTINGS["base_url"]).rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=float(timeout_seconds or COORDINATES_SETTINGS["timeout_seconds"]))

    async def lookup(self, cadastral_number: str) -> Coordinates:
        url = f"{self.base_url}/coordinates/{quote(cadastral_number, safe='')}"
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(url) as response:
                    return await read_coordinates(response, cadastral_number)
        except asyncio.TimeoutError:
            raise CoordinateServiceUnavailable(f"timeout for {cadastral_number}") from None
        except aiohttp.ClientError as e:
            raise CoordinateServiceUnavailable(f"client error for {cadastral_number}: {e}") from e


@dataclass(slots=True)
class LookupOutcome:
    coordinates: Optional[Coordinates] = None
    unavailable: bool = False


class CoordinateService:
    def __init__(self, client: CoordinatesLookup, queue: BackgroundTaskQueue) -> None:
        self.client = client
        self.queue = queue
        self._retry_lock = threading.Lock()
        # lot id -> cadastral numbers
        self._retry: dict[str, tuple[str, ...]] = {}

    async def find_first(self, cadastral_numbers: Iterable[str]) -> LookupOutcome:
        """Coordinates of the first number that resolves.

        ``unavailable`` is set when no number resolved and at least one
        lookup failed for a reason other than "not found".
        """
        outcome = LookupOutcome()
        for number in cadastral_numbers:
            if not number or not number.strip():
                continue
            try:
                outcome.coordinates = await self.client.lookup(number.strip())
            except CoordinatesNotFound:
                logger.info("No coordinates for cadastral number", cadastral_number=number)
                continue
            except CoordinateServiceUnavailable as e:
                logger.error("Coordinate service call failed", cadastral_number=number, error=str(e))
                outcome.unavailable = True
                continue
            outcome.unavailable = False
            logger.info("Coordinates found", cadastral_number=number)
            return outcome
        return outcome

    async def enrich_lot(
        self,
        repository: LotRepository,
        lot_id: str,
        cadastral_numbers: Iterable[str],
        source: str,
        *,
        force: bool = False,
    ) -> JobOutcome:
        numbers = tuple(cadastral_numbers)
        outcome = await self.find_first(numbers)
        audit = dict(event_type=AuditEventType.COORDINATES)
        if outcome.coordinates is not None:
            repository.set_coordinates(lot_id, outcome.coordinates.latitude, outcome.coordinates.longitude, force=force)
            repository.add_audit(lot_id, AuditStatus.SUCCESS, source, **audit)
            with self._retry_lock:
                self._retry.pop(lot_id, None)
            return JobOutcome.SUCCESS
        if outcome.unavailable:
            with self._retry_lock:
                self._retry[lot_id] = numbers
            repository.add_audit(lot_id, AuditStatus.FAILURE, source, details="Coordinate service unavailable", **audit)
            return JobOutcome.FAILURE
        repository.add_audit(lot_id, AuditStatus.FAILURE, source, details="No coordinates found", **audit)
        return JobOutcome.FAILURE

    def enqueue_lot(self, lot_id: str, cadastral_numbers: Iterable[str], source: str, *, force: bool = False) -> DeferredJob | None:
        numbers = tuple(n for n in cadastral_numbers if n)
        if not numbers:
            return None

        async def run(scope: "JobScope", stop_event: asyncio.Event) -> JobOutcome:
            return await self.enrich_lot(scope.repository, lot_id, numbers, source, force=force)

        return self.queue.enqueue(DeferredJob(
            name="lookup_coordinates",
            run=run,
            context={"lot_id": lot_id, "numbers": len(numbers), "source": source},
        ))

    def reprocess_retry_list(self) -> int:
        """Re-enqueue every lot whose lookup hit an unavailable service."""
        with self._retry_lock:
            pending = list(self._retry.items())
            self._retry.clear()
        for lot_id, numbers in pending:
            self.enqueue_lot(lot_id, numbers, "CoordinatesRetry")
        if pending:
            logger.info("Coordinate retry list re-enqueued", lots=len(pending))
        return len(pending)

    def retry_list_size(self) -> int:
        with self._retry_lock:
            return len(self._retry)


__all__ = [
    "Coordinates",
    "CoordinatesClient",
    "CoordinatesLookup",
    "CoordinateService",
    "CoordinatesNotFound",
    "CoordinateServiceUnavailable",
    "LookupOutcome",
    "read_coordinates",
]
