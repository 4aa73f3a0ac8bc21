"""
Proof record lifecycle.

Each submitted request becomes a ProofRecord driven by its own task:

    Sending -> Received | Error            (tunnel + notarization)
    Received | Failed -> Pending -> Verified | Failed   (verification)

Every mutation is followed by a full snapshot pushed to all subscribers.
Subscribers and readers only ever receive deep copies.
"""

import asyncio
import secrets
from collections.abc import Callable

from notarybridge.notary.engine import NotarizationEngine
from notarybridge.notary.session import NotarizationSession
from notarybridge.notary.verifier import EngineVerifier, RemoteVerifier, Verifier
from notarybridge.shared.config import Settings, get_settings
from notarybridge.shared.errors import InvalidState, RecordNotFound, TunnelConflict, TunnelNotFound, VerificationFailure
from notarybridge.shared.logging import get_logger
from notarybridge.shared.models import (
    HttpRequestSpec,
    NotarizationCall,
    ProofFormData,
    ProofRecord,
    ProofStatus,
    Tunnel,
    VerificationResult,
)
from notarybridge.tunnels.base import TunnelService
from notarybridge.tunnels.client import TunnelClient

logger = get_logger(__name__)

Subscriber = Callable[[list[ProofRecord]], None]

VERIFIABLE_STATES = (ProofStatus.RECEIVED, ProofStatus.FAILED)


def new_record_id() -> str:
    """Short url-safe id (8 characters)."""
    return secrets.token_urlsafe(6)


class ProofService:
    """Owns the proof-record registry and sequences tunnel, session and verifier."""

    def __init__(
        self,
        tunnels: TunnelService,
        session: NotarizationSession,
        verifier: Verifier,
        settings: Settings | None = None,
    ) -> None:
        self.tunnels = tunnels
        self.session = session
        self.verifier = verifier
        self.settings = settings or get_settings()
        self._records: list[ProofRecord] = []
        self._subscribers: list[Subscriber] = []
        self._tasks: dict[str, asyncio.Task[None]] = {}

    # Observation

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber; it immediately receives the current snapshot."""
        self._subscribers.append(callback)
        logger.debug(f"Subscriber added ({len(self._subscribers)} total)")
        callback(self._snapshot())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
                logger.debug(f"Subscriber removed ({len(self._subscribers)} remaining)")

        return unsubscribe

    def _snapshot(self) -> list[ProofRecord]:
        return [record.model_copy(deep=True) for record in self._records]

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self._snapshot())
            except Exception:
                logger.exception("Subscriber failed while handling a snapshot")

    # Queries

    def _find(self, record_id: str) -> ProofRecord | None:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    async def get_proof(self, record_id: str) -> ProofRecord | None:
        record = self._find(record_id)
        return record.model_copy(deep=True) if record else None

    async def get_all_proofs(self) -> list[ProofRecord]:
        return self._snapshot()

    async def delete_proof(self, record_id: str) -> None:
        """Remove a record. An in-flight task keeps running but no longer updates it."""
        record = self._find(record_id)
        if record is None:
            raise RecordNotFound(f"Record {record_id} not found")
        self._records.remove(record)
        logger.info(f"Proof record {record_id} deleted")
        self._notify()

    async def wait(self, record_id: str) -> ProofRecord | None:
        """Wait for a record's notarization task to finish and return its snapshot."""
        task = self._tasks.get(record_id)
        if task is not None:
            await asyncio.shield(task)
        return await self.get_proof(record_id)

    async def aclose(self) -> None:
        """Cancel in-flight record tasks."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # Submission

    async def send_request(self, form: ProofFormData) -> str:
        """Create a record in Sending and start its notarization task; returns the record id."""
        record_id = new_record_id()
        while self._find(record_id) is not None:
            record_id = new_record_id()

        record = ProofRecord(id=record_id, form_data=form, tunnel_request=form.tunnel_request())
        self._records.insert(0, record)
        logger.info(f"Proof record {record_id} created for {form.method.value} {form.url}")
        self._notify()

        task = asyncio.create_task(self._run(record_id), name=f"proof-{record_id}")
        self._tasks[record_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(record_id, None))
        return record_id

    async def _run(self, record_id: str) -> None:
        try:
            tunnel = await self._acquire_tunnel(record_id)
            if tunnel is not None:
                await self._notarize(record_id, tunnel)
        except asyncio.CancelledError:
            self._fail(record_id, ProofStatus.ERROR, RuntimeError("Proof request cancelled"))
            raise
        except Exception as exc:
            logger.error(f"Proof record {record_id} failed: {exc!r}")
            self._fail(record_id, ProofStatus.ERROR, exc)

    def _fail(self, record_id: str, status: ProofStatus, exc: BaseException) -> None:
        record = self._find(record_id)
        if record is None:
            return
        record.fail(status, exc)
        self._notify()

    async def _acquire_tunnel(self, record_id: str) -> Tunnel | None:
        """Create the record's tunnel, cleaning up and resubmitting on conflict within the retry budget."""
        record = self._find(record_id)
        if record is None:
            return None
        spec = record.tunnel_request

        conflicts = 0
        while True:
            record.attempts += 1
            try:
                tunnel = await self.tunnels.create(spec)
            except TunnelConflict:
                if conflicts >= self.settings.conflict_retry_budget:
                    raise
                conflicts += 1
                logger.warning(
                    f"Tunnel {spec.tunnel_id} already exists, cleaning up and resubmitting "
                    f"({conflicts}/{self.settings.conflict_retry_budget})"
                )
                deleted = await self.tunnels.delete_matching(spec)
                logger.info(f"Deleted conflicting tunnel(s): {deleted}")
                await asyncio.sleep(self.settings.conflict_retry_delay)

                record = self._find(record_id)
                if record is None:
                    return None
                self._notify()
                continue

            logger.info(f"Tunnel created for {record_id}: {tunnel.bridge_address}")
            if self._find(record_id) is None:
                await self._release(tunnel)
                return None
            return tunnel

    async def _notarize(self, record_id: str, tunnel: Tunnel) -> None:
        record = self._find(record_id)
        if record is None:
            await self._release(tunnel)
            return

        record.tunnel_result = tunnel
        record.notarization_call = self._build_call(record, tunnel)
        self._notify()

        try:
            result = await self.session.run(record.notarization_call)
        except asyncio.CancelledError:
            await asyncio.shield(self._release(tunnel))
            raise
        except Exception as exc:
            logger.error(f"Notarization failed for {record_id}: {exc!r}")
            await self._release(tunnel)
            self._fail(record_id, ProofStatus.ERROR, exc)
            return

        await self._release(tunnel)

        record = self._find(record_id)
        if record is None:
            return
        record.notarization_result = result
        record.status = ProofStatus.RECEIVED
        record.clear_error()
        logger.info(f"Proof record {record_id} received")
        self._notify()

    def _build_call(self, record: ProofRecord, tunnel: Tunnel) -> NotarizationCall:
        form = record.form_data
        return NotarizationCall(
            notary_url=form.notary_url,
            server_dns=form.remote_dns,
            bridge_address=tunnel.bridge_address,
            request=HttpRequestSpec(
                url=form.url,
                method=form.method,
                headers=form.headers,
                body=form.body,
            ),
            max_recv_data=self.settings.max_recv_data,
            secret_fragments=list(self.settings.secret_fragments),
        )

    async def _release(self, tunnel: Tunnel) -> None:
        try:
            current = await self.tunnels.get(tunnel.id)
            if current.pid != tunnel.pid:
                # Same spec, newer bridge: it belongs to another record now.
                logger.info(f"Tunnel {tunnel.id} was replaced, leaving it in place")
                return
            await self.tunnels.delete(tunnel.id)
        except TunnelNotFound:
            logger.info(f"Tunnel {tunnel.id} already removed")
        except Exception as exc:
            logger.warning(f"Failed to delete tunnel {tunnel.id}: {exc!r}")
        else:
            logger.info(f"Tunnel {tunnel.id} deleted")

    # Verification

    async def verify(self, record_id: str) -> VerificationResult:
        """
        Verify a received proof.

        Raises:
            RecordNotFound: If no record has this id
            InvalidState: If the record is not Received (or Failed, for a retry)
            VerificationFailure: If verification fails; the record moves to Failed
        """
        record = self._find(record_id)
        if record is None:
            raise RecordNotFound(f"Record {record_id} not found")
        if record.status not in VERIFIABLE_STATES or record.notarization_result is None:
            raise InvalidState(f"Record {record_id} is {record.status.value}, cannot verify proof")

        presentation_json = record.notarization_result.presentation_json
        record.status = ProofStatus.PENDING
        record.verification_result = None
        record.clear_error()
        self._notify()

        logger.info(f"Verifying proof {record_id} with notary {record.form_data.notary_url}")
        try:
            result = await self.verifier.verify(record.form_data.notary_url, presentation_json)
        except asyncio.CancelledError:
            self._fail(record_id, ProofStatus.FAILED, RuntimeError("Verification cancelled"))
            raise
        except Exception as exc:
            logger.error(f"Verification failed for {record_id}: {exc!r}")
            self._fail(record_id, ProofStatus.FAILED, exc)
            if isinstance(exc, VerificationFailure):
                raise
            raise VerificationFailure(f"Presentation verification failed: {exc}") from exc

        record = self._find(record_id)
        if record is not None:
            record.verification_result = result
            record.status = ProofStatus.VERIFIED
            self._notify()
        return result


def create_proof_service(
    engine: NotarizationEngine,
    settings: Settings | None = None,
    tunnels: TunnelService | None = None,
) -> ProofService:
    """
    Wire a ProofService from settings.

    Uses the tunnel API at settings.tunnel_api_base unless a tunnel service
    is given, and the remote verifier when settings.verifier_url is set.
    """
    settings = settings or get_settings()
    verifier: Verifier = RemoteVerifier(settings) if settings.verifier_url else EngineVerifier(engine)
    return ProofService(
        tunnels=tunnels or TunnelClient(settings=settings),
        session=NotarizationSession(engine, settings),
        verifier=verifier,
        settings=settings,
    )
