"""
Unit tests for the record model and cold key layout.

Tests cover:
- Cold key format and prefix handling
- Record creation, hashing and validation
- Task state lifecycle
"""

from datetime import date

import pytest

from tests.helpers import OLD_CREATED_AT
from tiering.tiervault.errors import MalformedPayloadError
from tiering.tiervault.models import (
    MAX_PAYLOAD_BYTES,
    ArchivalTask,
    Record,
    RecordRef,
    TaskState,
    cold_key,
    compute_content_hash,
    created_date,
)


class TestColdKey:
    """Tests for cold_key()."""

    def test_hierarchical_layout(self):
        """Key is prefix, zero-padded date components, then record id."""
        assert cold_key(date(2024, 1, 5), "inv-1") == "records/year=2024/month=01/day=05/inv-1"

    def test_custom_prefix_is_stripped(self):
        assert cold_key(date(2023, 12, 31), "a", "archive/") == "archive/year=2023/month=12/day=31/a"

    def test_empty_prefix(self):
        assert cold_key(date(2024, 2, 29), "a", "") == "year=2024/month=02/day=29/a"

    def test_deterministic(self):
        """Same inputs always give the same key."""
        assert cold_key(date(2024, 1, 5), "x") == cold_key(date(2024, 1, 5), "x")

    @pytest.mark.parametrize("record_id", ["", "a/b", ".", ".."])
    def test_rejects_unusable_ids(self, record_id):
        with pytest.raises(MalformedPayloadError):
            cold_key(date(2024, 1, 5), record_id)

    def test_ref_uses_utc_creation_date(self):
        ref = RecordRef("inv-1", "inv-1", OLD_CREATED_AT)
        assert created_date(OLD_CREATED_AT) == date(2024, 1, 5)
        assert ref.cold_key() == "records/year=2024/month=01/day=05/inv-1"

    def test_date_boundary_just_before_midnight(self):
        """23:59:59.999 UTC still belongs to the same day."""
        end_of_day = 1704499199999  # 2024-01-05T23:59:59.999Z
        assert created_date(end_of_day) == date(2024, 1, 5)
        assert created_date(end_of_day + 1) == date(2024, 1, 6)


class TestRecord:
    """Tests for Record."""

    def test_create_computes_hash(self):
        record = Record.create("r1", b"hello")
        assert record.content_hash == compute_content_hash(b"hello")
        assert record.content_hash.startswith("sha256:")
        assert len(record.content_hash) == len("sha256:") + 64

    def test_partition_key_defaults_to_id(self):
        assert Record.create("r1", b"x").partition_key == "r1"
        assert Record.create("r1", b"x", partition_key="tenant-1").partition_key == "tenant-1"

    def test_created_at_defaults_to_now(self):
        record = Record.create("r1", b"x")
        assert record.created_at > OLD_CREATED_AT

    def test_version_starts_at_zero(self):
        assert Record.create("r1", b"x").version == 0

    def test_rejects_oversize_payload(self):
        with pytest.raises(MalformedPayloadError) as exc_info:
            Record.create("r1", b"x" * (MAX_PAYLOAD_BYTES + 1))
        assert exc_info.value.details["size"] == MAX_PAYLOAD_BYTES + 1

    def test_accepts_max_payload(self):
        record = Record.create("r1", b"x" * MAX_PAYLOAD_BYTES)
        assert len(record.payload) == MAX_PAYLOAD_BYTES

    def test_rejects_invalid_id(self):
        with pytest.raises(MalformedPayloadError):
            Record.create("a/b", b"x")

    def test_verify_hash_detects_tampering(self):
        record = Record("r1", "r1", OLD_CREATED_AT, b"changed", compute_content_hash(b"orig"))
        with pytest.raises(MalformedPayloadError):
            record.verify_hash()

    def test_ref(self):
        record = Record.create("r1", b"x", partition_key="p", created_at=OLD_CREATED_AT)
        assert record.ref == RecordRef("r1", "p", OLD_CREATED_AT)
        assert record.ref.identity == ("r1", "p")

    def test_ref_dict_form(self):
        ref = RecordRef("r1", "p", OLD_CREATED_AT)
        assert RecordRef.from_dict(ref.to_dict()) == ref


class TestTaskState:
    """Tests for ArchivalTask lifecycle helpers."""

    @pytest.mark.parametrize(
        "state,terminal",
        [
            (TaskState.PENDING, False),
            (TaskState.WRITING, False),
            (TaskState.VERIFIED, False),
            (TaskState.DELETING, False),
            (TaskState.DONE, True),
            (TaskState.DEAD_LETTERED, True),
        ],
    )
    def test_terminal_states(self, state, terminal):
        task = ArchivalTask(ref=RecordRef("r1", "r1", OLD_CREATED_AT), state=state)
        assert task.is_terminal is terminal

    def test_new_task_defaults(self):
        task = ArchivalTask(ref=RecordRef("r1", "r1", OLD_CREATED_AT))
        assert task.state == TaskState.PENDING
        assert task.attempt == 0
        assert task.last_error is None
