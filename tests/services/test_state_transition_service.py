import pytest
from conftest import make_notification, make_pending_document
from hypothesis import given
from hypothesis import strategies as st

from event_media.models.event import PendingEvent
from event_media.services.state_transition_service import (
    PromotionRequest,
    StateTransitionCoordinator,
    TransitionState,
    TransitionStep,
    TransitionTrace,
    advance,
    is_promoted,
    next_step,
)

KEY = "biz42_1700000000"
ORIGINAL = f"events/{KEY}.mp4"
DERIVATIVE = f"events/{KEY}_compressed.mp4"

ORDER = [
    TransitionStep.UPLOAD_DERIVATIVE,
    TransitionStep.WRITE_LIVE,
    TransitionStep.DELETE_PENDING,
    TransitionStep.DELETE_ORIGINAL,
]


def test_happy_path_visits_every_state_in_order():
    state = TransitionState.DOWNLOADED
    visited = [state]
    while next_step(state) is not None:
        state = advance(state, True)
        visited.append(state)

    assert visited == [
        TransitionState.DOWNLOADED,
        TransitionState.ENCODED,
        TransitionState.DERIVATIVE_UPLOADED,
        TransitionState.LIVE_WRITTEN,
        TransitionState.PENDING_DELETED,
        TransitionState.ORIGINAL_DELETED,
    ]


@pytest.mark.parametrize(
    "state,expected",
    [
        (TransitionState.DOWNLOADED, TransitionState.FAILED),
        (TransitionState.ENCODED, TransitionState.FAILED),
        (TransitionState.DERIVATIVE_UPLOADED, TransitionState.FAILED),
        (TransitionState.LIVE_WRITTEN, TransitionState.HALTED),
        (TransitionState.PENDING_DELETED, TransitionState.PENDING_DELETED),
    ],
)
def test_failure_transitions(state, expected):
    assert advance(state, False) == expected


@pytest.mark.parametrize(
    "state",
    [
        TransitionState.ORIGINAL_DELETED,
        TransitionState.FAILED,
        TransitionState.HALTED,
    ],
)
def test_terminal_states_have_no_step(state):
    assert next_step(state) is None
    with pytest.raises(ValueError):
        advance(state, True)


@given(outcomes=st.lists(st.booleans(), min_size=5, max_size=5))
def test_original_is_only_deleted_after_pending(outcomes):
    state = TransitionState.DOWNLOADED
    steps = []
    for succeeded in outcomes:
        step = next_step(state)
        if step is None:
            break
        steps.append(step)
        new_state = advance(state, succeeded)
        if not succeeded:
            break
        state = new_state

    if TransitionStep.DELETE_ORIGINAL in steps:
        assert is_promoted(state)
        assert steps.index(TransitionStep.DELETE_PENDING) < steps.index(
            TransitionStep.DELETE_ORIGINAL
        )


def build_request(compressed_size=3_000_000, tmp_path=None, pending_event=None):
    output = tmp_path / "output.mp4"
    output.write_bytes(b"compressed")
    return PromotionRequest(
        notification=make_notification(ORIGINAL, 5_000_000),
        correlation_key=KEY,
        pending_event=pending_event
        or PendingEvent.from_document(make_pending_document(KEY)),
        derivative_path=DERIVATIVE,
        local_output_path=str(output),
        original_size=5_000_000,
        compressed_size=compressed_size,
    )


@pytest.mark.asyncio
async def test_promote_runs_all_steps(
    tmp_path, object_store, event_store, pending_collection, live_collection
):
    object_store.add(ORIGINAL, 5_000_000)
    pending_collection.documents[KEY] = make_pending_document(KEY)
    coordinator = StateTransitionCoordinator(object_store, event_store)

    result = await coordinator.promote(build_request(tmp_path=tmp_path))

    assert result.state == TransitionState.ORIGINAL_DELETED
    assert result.trace.steps() == ORDER
    assert live_collection.documents[KEY]["video"] == result.derivative_url
    assert live_collection.documents[KEY]["image"] is None
    assert KEY not in pending_collection.documents
    assert ORIGINAL not in object_store.objects
    assert DERIVATIVE in object_store.objects


# Each injection point: which fake fails, and the state the chain must stop in
INJECTION_POINTS = [
    ("upload_derivative", TransitionState.FAILED),
    ("replace", TransitionState.FAILED),
    ("delete_pending", TransitionState.HALTED),
    ("delete_original", TransitionState.PENDING_DELETED),
]


@pytest.mark.asyncio
@pytest.mark.parametrize("failing,expected_state", INJECTION_POINTS)
async def test_no_data_loss_at_any_failure_point(
    failing,
    expected_state,
    tmp_path,
    object_store,
    event_store,
    pending_collection,
    live_collection,
):
    object_store.add(ORIGINAL, 5_000_000)
    pending_collection.documents[KEY] = make_pending_document(KEY)
    if failing == "upload_derivative":
        object_store.fail_on.add("upload_derivative")
    elif failing == "replace":
        live_collection.fail_on.add("replace")
    elif failing == "delete_pending":
        pending_collection.fail_on.add("delete")
    else:
        object_store.fail_on.add("delete")

    coordinator = StateTransitionCoordinator(object_store, event_store)
    result = await coordinator.promote(build_request(tmp_path=tmp_path))

    assert result.state == expected_state
    failed = [entry for entry in result.trace.entries if not entry.succeeded]
    assert len(failed) == 1

    # The event is always reachable through the live or the pending record
    assert KEY in live_collection.documents or KEY in pending_collection.documents
    # The original survives unless the live event exists and the pending one is gone
    if ORIGINAL not in object_store.objects:
        assert KEY in live_collection.documents
        assert KEY not in pending_collection.documents

    # Nothing after the failed step was attempted
    attempted = result.trace.steps()
    assert attempted == ORDER[: len(attempted)]


@pytest.mark.asyncio
async def test_live_write_failure_keeps_pending_and_original(
    tmp_path, object_store, event_store, pending_collection, live_collection
):
    object_store.add(ORIGINAL, 5_000_000)
    pending_collection.documents[KEY] = make_pending_document(KEY)
    live_collection.fail_on.add("replace")

    coordinator = StateTransitionCoordinator(object_store, event_store)
    result = await coordinator.promote(build_request(tmp_path=tmp_path))

    assert result.state == TransitionState.FAILED
    assert KEY in pending_collection.documents
    assert ORIGINAL in object_store.objects
    assert DERIVATIVE in object_store.objects
    assert not result.trace.attempted(TransitionStep.DELETE_PENDING)


def test_trace_records_attempts_and_successes():
    trace = TransitionTrace()
    trace.record(TransitionStep.ENCODE, True, TransitionState.ENCODED)
    trace.record(TransitionStep.UPLOAD_DERIVATIVE, False, TransitionState.FAILED)

    assert trace.succeeded(TransitionStep.ENCODE)
    assert trace.attempted(TransitionStep.UPLOAD_DERIVATIVE)
    assert not trace.succeeded(TransitionStep.UPLOAD_DERIVATIVE)
    assert not trace.attempted(TransitionStep.WRITE_LIVE)


@pytest.mark.asyncio
async def test_promotion_is_keyed_by_correlation_key(
    tmp_path, object_store, event_store, pending_collection, live_collection
):
    object_store.add(ORIGINAL, 5_000_000)
    pending_collection.documents[KEY] = make_pending_document(KEY)
    stale = PendingEvent.model_validate({**make_pending_document(KEY), "id": "legacy-id"})
    coordinator = StateTransitionCoordinator(object_store, event_store)

    result = await coordinator.promote(
        build_request(tmp_path=tmp_path, pending_event=stale)
    )

    assert result.state == TransitionState.ORIGINAL_DELETED
    assert list(live_collection.documents) == [KEY]
    assert live_collection.documents[KEY]["id"] == KEY
    assert pending_collection.documents == {}
