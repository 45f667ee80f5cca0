"""Tests for the upload progress store."""

from unittest.mock import patch

import pytest

from audiohub.storage.progress_store import (
    ProgressRecord,
    ProgressStage,
    ProgressStore,
    ProgressTransitionError,
)


@pytest.fixture
def store():
    return ProgressStore(retention_seconds=60)


def test_create_starts_receiving(store):
    record = store.create("upload-1", total_expected=1024)

    assert record.stage == ProgressStage.RECEIVING
    assert record.bytes_received == 0
    assert record.total_expected == 1024
    assert store.contains("upload-1")


def test_get_returns_copy(store):
    store.create("upload-1")
    snapshot = store.get("upload-1")
    snapshot.bytes_received = 999

    assert store.get("upload-1").bytes_received == 0


def test_get_unknown_returns_none(store):
    assert store.get("missing") is None


def test_bytes_never_decrease(store):
    store.create("upload-1")
    store.update_bytes("upload-1", 100)
    store.update_bytes("upload-1", 100)

    with pytest.raises(ProgressTransitionError):
        store.update_bytes("upload-1", 50)
    assert store.get("upload-1").bytes_received == 100


def test_bytes_only_while_receiving(store):
    store.create("upload-1")
    store.set_stage("upload-1", ProgressStage.VALIDATING)

    with pytest.raises(ProgressTransitionError):
        store.update_bytes("upload-1", 10)


def test_stage_order_is_enforced(store):
    store.create("upload-1")
    store.set_stage("upload-1", ProgressStage.VALIDATING)
    store.set_stage("upload-1", ProgressStage.CONVERTING)

    with pytest.raises(ProgressTransitionError):
        store.set_stage("upload-1", ProgressStage.VALIDATING)

    store.set_stage("upload-1", ProgressStage.UPLOADING)
    store.set_stage("upload-1", ProgressStage.DONE)
    assert store.get("upload-1").stage == ProgressStage.DONE


def test_terminal_stage_is_final(store):
    store.create("upload-1")
    store.set_stage("upload-1", ProgressStage.ERROR, message="boom")

    with pytest.raises(ProgressTransitionError):
        store.set_stage("upload-1", ProgressStage.VALIDATING)
    with pytest.raises(ProgressTransitionError):
        store.set_stage("upload-1", ProgressStage.ERROR)


def test_fail_sets_error_with_message(store):
    store.create("upload-1")
    store.fail("upload-1", "File is too large")

    record = store.get("upload-1")
    assert record.stage == ProgressStage.ERROR
    assert record.message == "File is too large"


def test_fail_does_not_override_done(store):
    store.create("upload-1")
    for stage in (
        ProgressStage.VALIDATING,
        ProgressStage.CONVERTING,
        ProgressStage.UPLOADING,
        ProgressStage.DONE,
    ):
        store.set_stage("upload-1", stage)

    store.fail("upload-1", "late failure")
    store.fail("missing", "ignored")

    assert store.get("upload-1").stage == ProgressStage.DONE


def test_create_rejects_id_in_progress(store):
    store.create("upload-1")
    with pytest.raises(ProgressTransitionError):
        store.create("upload-1")


def test_create_reuses_finished_id(store):
    store.create("upload-1")
    store.fail("upload-1", "error")

    record = store.create("upload-1")
    assert record.stage == ProgressStage.RECEIVING


def test_unknown_id_raises_key_error(store):
    with pytest.raises(KeyError):
        store.update_bytes("missing", 1)


def test_expired_terminal_records_are_evicted(store):
    with patch("audiohub.storage.progress_store.time.monotonic", return_value=1000.0):
        store.create("finished")
        store.create("running")
        store.fail("finished", "error")

    with patch("audiohub.storage.progress_store.time.monotonic", return_value=1061.0):
        assert store.evict_expired() == 1

    assert not store.contains("finished")
    assert store.contains("running")
    assert len(store) == 1


def test_remove(store):
    store.create("upload-1")
    store.remove("upload-1")
    store.remove("upload-1")
    assert not store.contains("upload-1")


def test_remove_with_finished_at_keeps_newer_record(store):
    store.create("upload-1")
    store.fail("upload-1", "boom")
    finished_at = store.get("upload-1").finished_at
    store.create("upload-1")

    store.remove("upload-1", finished_at=finished_at)
    assert store.get("upload-1").stage == ProgressStage.RECEIVING

    store.fail("upload-1", "boom again")
    store.remove("upload-1", finished_at=store.get("upload-1").finished_at)
    assert not store.contains("upload-1")


def test_record_to_dict_omits_missing_message():
    record = ProgressRecord(stage=ProgressStage.RECEIVING, bytes_received=10, total_expected=20)
    assert record.to_dict() == {"stage": "receiving", "bytes_received": 10, "total_expected": 20}

    failed = ProgressRecord(stage=ProgressStage.ERROR, message="bad")
    assert failed.to_dict()["message"] == "bad"
    assert failed.to_dict()["stage"] == "error"
