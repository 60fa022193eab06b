"""Integration tests for the onboarding pipeline with a SQLite store"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from elly_gateway.domain.exceptions import UserNotFoundError, ValidationError
from elly_gateway.domain.models import OnboardingPhase
from elly_gateway.infrastructure.database.models import ObligationRow, UserRow
from elly_gateway.infrastructure.events import EVENT_DONE, EVENT_FAILED, EVENT_PROGRESS, ProgressPublisher
from elly_gateway.services.onboarding import OnboardingPipeline


class RecordingPublisher(ProgressPublisher):
    """Keeps every published event, even those nobody subscribed to"""

    def __init__(self):
        super().__init__()
        self.events = []

    def publish(self, job_id, event, data):
        self.events.append((event, data))
        super().publish(job_id, event, data)


@pytest.fixture
def recorder():
    return RecordingPublisher()


@pytest.fixture
def make_pipeline(store, recorder):
    def _make(bank_client, **kwargs):
        kwargs.setdefault("default_banks", ["vbank", "abank"])
        kwargs.setdefault("inject_demo_transactions", False)
        return OnboardingPipeline(store=store, bank_client=bank_client, publisher=recorder, **kwargs)

    return _make


def _progress(events):
    return [data["progress"] for event, data in events if event == EVENT_PROGRESS]


async def test_onboarding_done_with_pending_bank(
    user, db, make_pipeline, bank_factory, recorder, sample_transactions
):
    """vbank approves and has bills, abank keeps its consent pending"""
    bank_client = bank_factory(
        transactions={"vbank": sample_transactions},
        consent_status={"abank": "awaitingAuthorization"},
    )
    pipeline = make_pipeline(bank_client)

    job = await pipeline.start_onboarding(user.id)
    assert job.phase == OnboardingPhase.CONSENTS_IN_PROGRESS
    assert job.progress == 5
    assert job.job_id.startswith("onb_")

    await pipeline.drain()

    status = await pipeline.get_job_status(job.job_id)
    assert status.phase == OnboardingPhase.DONE
    assert status.progress == 100
    assert status.per_bank_consent == {"vbank": "approved", "abank": "pending"}
    assert status.obligations_detected == 2
    assert status.error is None

    assert _progress(recorder.events) == [5, 25, 30, 60, 100]
    consents_event = recorder.events[1][1]
    assert consents_event["detail"] == {"consents": {"vbank": "approved", "abank": "pending"}}

    event, done = recorder.events[-1]
    assert event == EVENT_DONE
    assert done["obligationsDetected"] == 2
    assert sorted(p["category"] for p in done["payments"]) == ["Аренда", "Связь"]
    assert [p["day"] for p in done["payments"]] == [3, 12]
    assert {p["amountRub"] for p in done["payments"]} == {790.0, 35_000.0}

    assert [a.bank for a in bank_client.transaction_calls] == ["vbank"]
    assert db.query(ObligationRow).filter(ObligationRow.user_id == user.id).count() == 2


async def test_onboarding_isolates_failing_bank(user, make_pipeline, bank_factory, sample_transactions):
    bank_client = bank_factory(transactions={"vbank": sample_transactions}, failing_accounts={"sbank"})
    pipeline = make_pipeline(bank_client)

    job = await pipeline.start_onboarding(user.id, ["vbank", "abank", "sbank"])
    await pipeline.drain()

    status = await pipeline.get_job_status(job.job_id)
    assert status.phase == OnboardingPhase.DONE
    assert status.per_bank_consent == {"vbank": "approved", "abank": "approved", "sbank": "approved"}
    assert status.obligations_detected == 2


async def test_onboarding_consent_failure_is_pending(user, make_pipeline, bank_factory, sample_transactions):
    bank_client = bank_factory(transactions={"vbank": sample_transactions}, failing_consents={"abank"})
    pipeline = make_pipeline(bank_client)

    job = await pipeline.start_onboarding(user.id)
    await pipeline.drain()

    status = await pipeline.get_job_status(job.job_id)
    assert status.phase == OnboardingPhase.DONE
    assert status.per_bank_consent == {"vbank": "approved", "abank": "pending"}


async def test_onboarding_unknown_bank_fails(user, make_pipeline, bank_factory, recorder):
    bank_client = bank_factory(known_banks={"vbank"})
    pipeline = make_pipeline(bank_client)

    job = await pipeline.start_onboarding(user.id, ["vbank", "zbank"])
    await pipeline.drain()

    status = await pipeline.get_job_status(job.job_id)
    assert status.phase == OnboardingPhase.FAILED
    assert status.progress == 100
    assert "zbank" in status.error
    assert bank_client.consent_calls == []

    assert [event for event, _ in recorder.events] == [EVENT_PROGRESS, EVENT_PROGRESS, EVENT_FAILED]
    assert recorder.events[1][1] == {"phase": "FAILED", "progress": 100}
    assert "zbank" in recorder.events[-1][1]["error"]


async def test_onboarding_persist_failure_fails_job(user, store, make_pipeline, bank_factory, sample_transactions):
    bank_client = bank_factory(transactions={"vbank": sample_transactions})
    store.upsert_obligations = AsyncMock(side_effect=RuntimeError("database is down"))
    pipeline = make_pipeline(bank_client)

    job = await pipeline.start_onboarding(user.id)
    await pipeline.drain()

    status = await pipeline.get_job_status(job.job_id)
    assert status.phase == OnboardingPhase.FAILED
    assert status.error == "database is down"
    # Consent map from before the failure is kept
    assert status.per_bank_consent == {"vbank": "approved", "abank": "approved"}


async def test_onboarding_rerun_does_not_duplicate(user, db, make_pipeline, bank_factory, sample_transactions):
    pipeline = make_pipeline(bank_factory(transactions={"vbank": sample_transactions}))

    await pipeline.start_onboarding(user.id)
    await pipeline.drain()
    await pipeline.start_onboarding(user.id)
    await pipeline.drain()

    assert db.query(ObligationRow).count() == 2


async def test_onboarding_with_demo_transactions(user, make_pipeline, bank_factory):
    pipeline = make_pipeline(bank_factory(), inject_demo_transactions=True)

    job = await pipeline.start_onboarding(user.id)
    await pipeline.drain()

    status = await pipeline.get_job_status(job.job_id)
    assert status.phase == OnboardingPhase.DONE
    assert status.obligations_detected == 3


async def test_onboarding_stream_for_live_subscriber(user, store, bank_factory, sample_transactions):
    publisher = ProgressPublisher()
    pipeline = OnboardingPipeline(
        store=store,
        bank_client=bank_factory(transactions={"vbank": sample_transactions}),
        publisher=publisher,
        default_banks=["vbank"],
        inject_demo_transactions=False,
    )

    job = await pipeline.start_onboarding(user.id)
    events = [e async for e in publisher.subscribe(job.job_id)]
    await pipeline.drain()

    assert [e.event for e in events][-1] == EVENT_DONE
    progress = [e.data["progress"] for e in events if e.event == EVENT_PROGRESS]
    assert progress == sorted(progress)
    assert progress[0] == 5 and progress[-1] == 100


async def test_start_unknown_user(make_pipeline, bank_factory):
    pipeline = make_pipeline(bank_factory())

    with pytest.raises(UserNotFoundError):
        await pipeline.start_onboarding(999)


async def test_start_without_client_id(db, make_pipeline, bank_factory):
    db.add(UserRow(id=43, email="@example.com"))
    db.commit()
    pipeline = make_pipeline(bank_factory())

    with pytest.raises(ValidationError):
        await pipeline.start_onboarding(43)


async def test_start_with_blank_banks(user, make_pipeline, bank_factory):
    pipeline = make_pipeline(bank_factory())

    with pytest.raises(ValidationError):
        await pipeline.start_onboarding(user.id, ["  "])


async def test_start_returns_before_run_completes(user, make_pipeline, bank_factory):
    bank_client = bank_factory()
    gate = asyncio.Event()
    original = bank_client.ensure_accounts_consent

    async def slow_consent(*args, **kwargs):
        await gate.wait()
        return await original(*args, **kwargs)

    bank_client.ensure_accounts_consent = slow_consent
    pipeline = make_pipeline(bank_client)

    job = await pipeline.start_onboarding(user.id)
    snapshot = await pipeline.get_job_status(job.job_id)
    assert snapshot.phase == OnboardingPhase.CONSENTS_IN_PROGRESS

    gate.set()
    await pipeline.drain()
    assert (await pipeline.get_job_status(job.job_id)).phase == OnboardingPhase.DONE


async def test_derive_client_id(user, make_pipeline, bank_factory):
    pipeline = make_pipeline(bank_factory())
    assert await pipeline.derive_client_id(user.id) == "ivan-petrov"
