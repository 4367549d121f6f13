import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from gradebook.schemas.documents import DocumentSnapshot, QuerySnapshot
from gradebook.schemas.query import Direction, DocumentRef, collection

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def grade(student_id="S1", score=80, minutes=0):
    return {
        "studentId": student_id,
        "assignmentId": "A1",
        "score": score,
        "submittedDate": T0 + timedelta(minutes=minutes),
    }


def s1_grades():
    return collection("grades").where("studentId", "S1").order_by("submittedDate", Direction.DESCENDING)


@pytest.mark.asyncio
async def test_initial_snapshot_is_delivered_on_registration(store, recorder):
    existing = await store.client.add_document("grades", grade())

    sub = await store.subscriptions.subscribe(s1_grades(), recorder)

    assert len(recorder.snapshots) == 1
    first = recorder.snapshots[0]
    assert isinstance(first, QuerySnapshot)
    assert first.ids == (existing,)
    assert sub.active


@pytest.mark.asyncio
async def test_initial_snapshot_of_empty_result(store, recorder):
    await store.subscriptions.subscribe(s1_grades(), recorder)
    assert recorder.sizes == [0]


@pytest.mark.asyncio
async def test_every_matching_write_produces_a_snapshot(store, recorder):
    await store.subscriptions.subscribe(s1_grades(), recorder)

    ids = []
    for minutes in (1, 2, 3):
        ids.append(await store.client.add_document("grades", grade(minutes=minutes)))
    await store.subscriptions.flush()

    assert recorder.sizes == [0, 1, 2, 3]
    # ordine richiesto: submittedDate decrescente
    assert recorder.snapshots[-1].ids == tuple(reversed(ids))
    revisions = [s.revision for s in recorder.snapshots]
    assert revisions == sorted(revisions)


@pytest.mark.asyncio
async def test_writes_outside_the_matching_set_are_not_delivered(store, recorder):
    await store.subscriptions.subscribe(s1_grades(), recorder)

    await store.client.add_document("grades", grade(student_id="S2"))
    await store.client.add_document("students", {"name": "Jo", "email": "jo@x.com", "enrollmentDate": T0})
    await store.subscriptions.flush()

    assert recorder.sizes == [0]


@pytest.mark.asyncio
async def test_updates_and_deletes_change_the_snapshot(store, recorder):
    doc_id = await store.client.add_document("grades", grade(score=40))
    await store.subscriptions.subscribe(s1_grades(), recorder)

    await store.client.update_document("grades", doc_id, {"score": 60})
    await store.client.update_document("grades", doc_id, {"studentId": "S2"})
    await store.subscriptions.flush()

    assert recorder.sizes == [1, 1, 0]
    assert recorder.snapshots[1].documents[0].data["score"] == 60


@pytest.mark.asyncio
async def test_batch_is_delivered_as_one_snapshot(store, recorder):
    await store.subscriptions.subscribe(s1_grades(), recorder)

    await store.client.batch().create("grades", grade(minutes=1)).create("grades", grade(minutes=2)).commit()
    await store.subscriptions.flush()

    assert recorder.sizes == [0, 2]


@pytest.mark.asyncio
async def test_limited_query_refills_after_delete(store, recorder):
    ids = [await store.client.add_document("grades", grade(score=s)) for s in (50, 70, 90)]
    query = collection("grades").order_by("score", Direction.DESCENDING).limit(2)
    await store.subscriptions.subscribe(query, recorder)

    await store.client.delete_document("grades", ids[2])
    await store.subscriptions.flush()

    assert [[d.data["score"] for d in s] for s in recorder.snapshots] == [[90, 70], [70, 50]]


@pytest.mark.asyncio
async def test_document_subscription(store, recorder):
    doc_id = await store.client.add_document("students", {"name": "Jo", "email": "jo@x.com", "enrollmentDate": T0})
    await store.subscriptions.subscribe(DocumentRef("students", doc_id), recorder)

    await store.client.update_document("students", doc_id, {"name": "Joanna"})
    await store.client.delete_document("students", doc_id)
    await store.subscriptions.flush()

    assert all(isinstance(s, DocumentSnapshot) for s in recorder.snapshots)
    assert [s.exists for s in recorder.snapshots] == [True, True, False]
    assert recorder.snapshots[1].document.data["name"] == "Joanna"


@pytest.mark.asyncio
async def test_no_delivery_after_cancel(store, recorder):
    sub = await store.subscriptions.subscribe(s1_grades(), recorder)

    await sub.cancel()
    await store.client.add_document("grades", grade())
    await store.subscriptions.flush()

    assert recorder.sizes == [0]
    assert not sub.active
    assert len(store.subscriptions) == 0
    # cancel idempotente
    await sub.cancel()


@pytest.mark.asyncio
async def test_callback_error_does_not_tear_down_subscription(store):
    seen = []

    def flaky(snapshot):
        seen.append(len(snapshot))
        if len(seen) == 2:
            raise RuntimeError("boom")

    sub = await store.subscriptions.subscribe(s1_grades(), flaky)
    await store.client.add_document("grades", grade(minutes=1))
    await store.client.add_document("grades", grade(minutes=2))
    await store.subscriptions.flush()

    assert seen == [0, 1, 2]
    assert sub.active


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(store):
    seen = []

    async def on_change(snapshot):
        await asyncio.sleep(0)
        seen.append(len(snapshot))

    await store.subscriptions.subscribe(s1_grades(), on_change)
    await store.client.add_document("grades", grade())
    await store.subscriptions.flush()

    assert seen == [0, 1]


@pytest.mark.asyncio
async def test_cancel_from_inside_own_callback(store):
    seen = []
    holder = {}

    async def on_change(snapshot):
        seen.append(len(snapshot))
        if len(seen) == 2:
            await holder["sub"].cancel()

    holder["sub"] = await store.subscriptions.subscribe(s1_grades(), on_change)
    for minutes in (1, 2, 3):
        await store.client.add_document("grades", grade(minutes=minutes))
    await store.subscriptions.flush()

    assert seen == [0, 1]


@pytest.mark.asyncio
async def test_subscribe_from_inside_a_callback(store, recorder_factory):
    inner = recorder_factory()
    subs = []

    async def on_change(snapshot):
        if len(snapshot) == 1 and not subs:
            subs.append(await store.subscriptions.subscribe(DocumentRef("grades", snapshot.ids[0]), inner))

    await store.subscriptions.subscribe(s1_grades(), on_change)
    doc_id = await store.client.add_document("grades", grade(score=10))
    await store.subscriptions.flush()
    await store.client.update_document("grades", doc_id, {"score": 20})
    await store.subscriptions.flush()

    assert [s.document.data["score"] for s in inner.snapshots] == [10, 20]


@pytest.mark.asyncio
async def test_subscriptions_are_independent(store, recorder_factory):
    first, second = recorder_factory(), recorder_factory()
    sub_a = await store.subscriptions.subscribe(s1_grades(), first)
    await store.subscriptions.subscribe(collection("grades").where("studentId", "S2"), second)

    await sub_a.cancel()
    await store.client.add_document("grades", grade(student_id="S1"))
    await store.client.add_document("grades", grade(student_id="S2"))
    await store.subscriptions.flush()

    assert first.sizes == [0]
    assert second.sizes == [0, 1]


@pytest.mark.asyncio
async def test_listen_releases_on_error_exit(store, recorder):
    with pytest.raises(RuntimeError):
        async with store.subscriptions.listen(s1_grades(), recorder) as sub:
            raise RuntimeError("caller failed")

    assert not sub.active
    assert len(store.subscriptions) == 0


@pytest.mark.asyncio
async def test_subscription_handle_is_a_context_manager(store, recorder):
    async with await store.subscriptions.subscribe(s1_grades(), recorder) as sub:
        assert sub.active
    assert not sub.active


@pytest.mark.asyncio
async def test_dispatcher_delivers_without_explicit_flush(store):
    delivered = asyncio.Event()

    def on_change(snapshot):
        if len(snapshot) == 1:
            delivered.set()

    await store.subscriptions.subscribe(s1_grades(), on_change)
    await store.client.add_document("grades", grade())

    await asyncio.wait_for(delivered.wait(), timeout=5)


@pytest.mark.asyncio
async def test_rejects_unknown_targets(store):
    with pytest.raises(TypeError):
        await store.subscriptions.subscribe("grades", lambda s: None)
