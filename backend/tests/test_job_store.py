from dataclasses import replace
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.errors import (
    ConflictError,
    InvalidRequestError,
    InvalidTransitionError,
    JobFrozenError,
    NotFoundError,
    StorageError,
)
from app.models import JobStatus
from app.services.job_store import InMemoryJobStore, SqlJobStore, build_job_store
from app.services.state_machine import ErrorDetail, apply_progress, failure_event, progress_event, success_event


def test_create_then_get_is_pending(store):
    created = store.create("arXiv:1706.03762")
    fetched = store.get(created.id)

    assert fetched.status is JobStatus.pending
    assert fetched.progress == 0
    assert fetched.external_ref == "arXiv:1706.03762"
    assert fetched.result is None and fetched.error_detail is None
    assert fetched.created_at == fetched.updated_at


def test_ids_are_unique_even_for_the_same_reference(store):
    ids = {store.create("same-paper").id for _ in range(20)}
    assert len(ids) == 20


def test_get_unknown_id_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.get("does-not-exist")


def test_update_unknown_id_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.update("does-not-exist", progress_event(10))


def test_update_advances_updated_at_and_version(store):
    job = store.create("p")
    first = store.update(job.id, progress_event(10))
    second = store.update(job.id, progress_event(10))

    assert first.version == job.version + 1
    assert second.version == first.version + 1
    assert job.updated_at < first.updated_at < second.updated_at
    assert second.created_at == job.created_at
    assert store.get(job.id) == second


def test_updated_at_advances_with_a_frozen_clock():
    fixed = datetime(2024, 5, 1, tzinfo=timezone.utc)
    store = InMemoryJobStore(clock=lambda: fixed)
    job = store.create("p")

    updated = store.update(job.id, progress_event(1))
    assert updated.updated_at > job.updated_at


def test_noop_update_writes_nothing(store):
    job = store.create("p")
    done = store.update(job.id, success_event("videos/x.mp4"))
    again = store.update(job.id, success_event("videos/x.mp4"))

    assert again == done
    assert store.get(job.id).version == done.version


def test_terminal_mutation_is_a_conflict(store):
    job = store.create("p")
    store.update(job.id, failure_event("RENDER_FAILED", "boom"))

    with pytest.raises(ConflictError):
        store.update(job.id, progress_event(50))
    assert store.get(job.id).status is JobStatus.failed


def test_failed_mutation_leaves_no_partial_state(store):
    job = store.create("p")
    before = store.update(job.id, progress_event(60))

    def half_applied(current):
        apply_progress(current, 70)
        raise RuntimeError("worker bug")

    with pytest.raises(RuntimeError):
        store.update(job.id, half_applied)
    assert store.get(job.id) == before


def test_mutation_cannot_rewrite_identity(store):
    job = store.create("p")
    updated = store.update(job.id, lambda current: replace(apply_progress(current, 5), external_ref="hijacked"))
    assert updated.external_ref == "p"
    assert store.get(job.id).external_ref == "p"


def test_sql_loser_reapplies_against_latest_state(session_factory):
    store = SqlJobStore(session_factory)
    other_worker = SqlJobStore(session_factory)
    job = store.create("p")
    store.update(job.id, progress_event(10))
    seen = []

    def racing(current):
        seen.append(current.progress)
        if len(seen) == 1:
            # Another writer commits between our read and our write.
            other_worker.update(job.id, progress_event(40))
        return apply_progress(current, 30)

    with pytest.raises(InvalidTransitionError):
        store.update(job.id, racing)

    # Second attempt saw 40 and the decrease to 30 was rejected.
    assert seen == [10, 40]
    assert store.get(job.id).progress == 40


def test_sql_gives_up_with_conflict_after_retry_budget(session_factory):
    store = SqlJobStore(session_factory, max_retries=2)
    other_worker = SqlJobStore(session_factory)
    job = store.create("p")
    calls = []

    def always_beaten(current):
        calls.append(current.version)
        other_worker.update(job.id, progress_event(current.progress + 1))
        return apply_progress(current, current.progress + 1)

    with pytest.raises(ConflictError) as exc:
        store.update(job.id, always_beaten)

    assert not isinstance(exc.value, JobFrozenError)
    assert len(calls) == 2
    assert store.get(job.id).progress == 2


def test_sql_store_reports_unavailable_storage(tmp_path):
    # No tables: every statement fails at the database.
    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    store = SqlJobStore(sessionmaker(bind=engine))

    with pytest.raises(StorageError):
        store.create("p")
    with pytest.raises(StorageError):
        store.get("anything")
    engine.dispose()


def test_build_job_store_selects_backend():
    assert isinstance(build_job_store("memory"), InMemoryJobStore)
    assert isinstance(build_job_store("SQL"), SqlJobStore)
    with pytest.raises(ValueError):
        build_job_store("redis")


def test_store_freezes_terminal_jobs_against_raw_mutations(store):
    job = store.create("p")
    done = store.update(job.id, success_event("videos/p.mp4"))

    with pytest.raises(JobFrozenError):
        store.update(job.id, lambda current: replace(current, status=JobStatus.failed, progress=7, result=None))
    assert store.get(job.id) == done


@pytest.mark.parametrize(
    "mutation",
    [
        lambda cur: replace(cur, progress=101),
        lambda cur: replace(cur, progress=-1),
        lambda cur: replace(cur, progress=20),
        lambda cur: replace(cur, status=JobStatus.pending),
        lambda cur: replace(cur, result="videos/early.mp4"),
        lambda cur: replace(cur, status=JobStatus.succeeded, progress=100),
        lambda cur: replace(cur, status=JobStatus.succeeded, progress=90, result="videos/p.mp4"),
        lambda cur: replace(cur, status=JobStatus.failed),
        lambda cur: replace(cur, status=JobStatus.failed, progress=50, error_detail=ErrorDetail("K", "m")),
        lambda cur: replace(cur, status=JobStatus.failed, error_detail=ErrorDetail("K" * 65, "m")),
        lambda cur: replace(cur, error_detail=ErrorDetail("K", "m")),
    ],
)
def test_store_rejects_mutations_that_break_invariants(store, mutation):
    job = store.create("p")
    running = store.update(job.id, progress_event(30))

    with pytest.raises(InvalidTransitionError):
        store.update(job.id, mutation)
    assert store.get(job.id) == running


def test_store_accepts_collapsed_success_from_pending(store):
    job = store.create("p")
    done = store.update(job.id, lambda cur: replace(cur, status=JobStatus.succeeded, progress=100, result="r"))
    assert done.status is JobStatus.succeeded


@pytest.mark.parametrize("ref", ["", "x" * 513])
def test_create_rejects_references_the_table_cannot_hold(store, ref):
    with pytest.raises(InvalidRequestError):
        store.create(ref)


def test_create_accepts_the_longest_reference(store):
    ref = "x" * 512
    assert store.get(store.create(ref).id).external_ref == ref


def test_failure_with_overlong_error_kind_is_rejected_by_both_stores(store):
    job = store.create("p")
    with pytest.raises(InvalidTransitionError):
        store.update(job.id, failure_event("K" * 65, "m"))
    assert store.update(job.id, failure_event("K" * 64, "m")).status is JobStatus.failed
