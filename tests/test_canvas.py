"""Tests for drag positions and canvas sync."""

from __future__ import annotations

from typing import Any
from unittest.mock import patch

import pytest

from blockflow.canvas import (
    CONNECTIONS_KEY,
    CanvasSyncController,
    DragKind,
    DragPositionStore,
    incoming_context_key,
)
from blockflow.errors import DragStateError
from blockflow.events import DRAG_END, DRAG_START, INVALIDATE, NOTIFY, EventBus
from blockflow.models import Connection, Position


class Recorder:
    """Collects every canvas event in order."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[tuple[str, Any]] = []
        for name in (DRAG_START, DRAG_END, INVALIDATE, NOTIFY):
            bus.on(name, lambda data, name=name: self.events.append((name, data)))

    def of(self, name: str) -> list[Any]:
        return [data for event, data in self.events if event == name]


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> Recorder:
    return Recorder(bus)


@pytest.fixture
def controller(store, bus) -> CanvasSyncController:
    return CanvasSyncController(store, bus=bus)


# ---------------------------------------------------------------------------
# DragPositionStore
# ---------------------------------------------------------------------------


class TestDragPositionStore:
    def test_set_and_get(self) -> None:
        positions = DragPositionStore()
        positions.set_position("b1", 10, 20)
        assert positions.get_position("b1") == Position(10, 20)
        assert positions.get_position("nope") is None

    def test_initialize_keeps_existing(self) -> None:
        positions = DragPositionStore()
        positions.set_position("b1", 1, 1)
        positions.initialize({"b1": Position(9, 9), "b2": Position(2, 2)})

        assert positions.get_position("b1") == Position(1, 1)
        assert positions.get_position("b2") == Position(2, 2)

    def test_initialize_overwrite(self) -> None:
        positions = DragPositionStore()
        positions.set_position("b1", 1, 1)
        positions.initialize({"b1": Position(9, 9)}, overwrite=True)
        assert positions.get_position("b1") == Position(9, 9)

    def test_remove_and_clear(self) -> None:
        positions = DragPositionStore()
        positions.set_position("b1", 1, 1)
        positions.set_position("b2", 2, 2)
        positions.remove("b1")
        assert len(positions) == 1
        positions.clear()
        assert positions.snapshot() == {}


# ---------------------------------------------------------------------------
# Drag lifecycle
# ---------------------------------------------------------------------------


class TestDragLifecycle:
    def test_moves_persist_once_on_release(self, store, make_block, controller, recorder) -> None:
        """Should update positions in memory per move and persist only on release."""
        make_block("b1", x=0, y=0)

        with patch.object(store, "update_block_position", wraps=store.update_block_position) as persist:
            session = controller.begin_drag("b1")
            assert controller.is_suspended
            assert not controller.should_refetch()

            for step in range(1, 31):
                session.move(step * 10, step * 5)
                assert controller.positions.get_position("b1") == Position(step * 10, step * 5)
            assert persist.call_count == 0

            final = session.release()

        persist.assert_called_once_with("b1", Position(300, 150))
        assert final == Position(300, 150)
        assert store.get_block("b1").position == Position(300, 150)
        assert not controller.is_suspended
        assert controller.should_refetch()

        start, end = recorder.of(DRAG_START)[0], recorder.of(DRAG_END)[0]
        assert start.origin == Position(0, 0)
        assert end.committed is True
        assert end.position == Position(300, 150)

    def test_release_without_move_does_not_persist(self, store, make_block, controller) -> None:
        make_block("b1", x=5, y=5)
        with patch.object(store, "update_block_position") as persist:
            assert controller.begin_drag("b1").release() is None
        persist.assert_not_called()

    def test_second_drag_rejected(self, make_block, controller) -> None:
        make_block("b1")
        make_block("b2")
        controller.begin_drag("b1")

        with pytest.raises(DragStateError, match="in progress"):
            controller.begin_drag("b2")

    def test_release_is_idempotent(self, store, make_block, controller, recorder) -> None:
        make_block("b1")
        session = controller.begin_drag("b1")
        session.move(1, 2)

        with patch.object(store, "update_block_position", wraps=store.update_block_position) as persist:
            assert session.release() == Position(1, 2)
            assert session.release() == Position(1, 2)

        assert persist.call_count == 1
        assert len(recorder.of(DRAG_END)) == 1

    def test_move_after_release(self, make_block, controller) -> None:
        make_block("b1")
        session = controller.begin_drag("b1")
        session.release()
        with pytest.raises(DragStateError):
            session.move(1, 1)

    def test_cancel_reverts(self, store, make_block, controller, recorder) -> None:
        make_block("b1", x=3, y=4)
        with patch.object(store, "update_block_position") as persist:
            session = controller.begin_drag("b1")
            session.move(100, 100)
            session.cancel()

        persist.assert_not_called()
        assert controller.positions.get_position("b1") == Position(3, 4)
        assert recorder.of(DRAG_END)[0].committed is False
        assert not controller.is_suspended

    def test_cancel_without_origin_forgets_position(self, store, controller) -> None:
        with patch.object(store, "update_block_position") as persist:
            session = controller.begin_drag("unsaved")
            session.move(50, 60)
            assert controller.positions.get_position("unsaved") == Position(50, 60)
            session.cancel()

        persist.assert_not_called()
        assert controller.positions.get_position("unsaved") is None

    def test_scoped_drag_releases(self, store, make_block, controller) -> None:
        make_block("b1")
        with controller.drag("b1") as session:
            session.move(7, 8)
        assert store.get_block("b1").position == Position(7, 8)
        assert not controller.is_suspended

    def test_exception_in_scoped_drag_cancels(self, store, make_block, controller) -> None:
        """Should lift the suspension and restore the origin when the body raises."""
        make_block("b1", x=1, y=1)
        controller.request_invalidation("before")

        with pytest.raises(RuntimeError):
            with controller.drag("b1") as session:
                session.move(50, 50)
                controller.request_invalidation("during")
                raise RuntimeError("pointer lost")

        assert not controller.is_suspended
        assert controller.positions.get_position("b1") == Position(1, 1)
        assert store.get_block("b1").position == Position(1, 1)
        assert controller.pending_invalidations() == []
        # A new drag can start
        controller.begin_drag("b1").cancel()

    def test_session_context_manager(self, make_block, controller) -> None:
        make_block("b1")
        with pytest.raises(ValueError):
            with controller.begin_drag("b1") as session:
                raise ValueError("boom")
        assert session.committed is False
        assert not controller.is_suspended

    def test_failed_persist_still_lifts_suspension(self, store, make_block, controller, recorder) -> None:
        make_block("b1")
        session = controller.begin_drag("b1")
        session.move(2, 2)
        controller.request_invalidation("k")

        with patch.object(store, "update_block_position", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                session.release()

        assert not controller.is_suspended
        assert [e.key for e in recorder.of(INVALIDATE)] == ["k"]

    def test_foreign_session_rejected(self, make_block, store, bus) -> None:
        make_block("b1")
        first = CanvasSyncController(store, bus=bus)
        second = CanvasSyncController(store, bus=bus)
        session = first.begin_drag("b1")
        second.begin_drag("b1")

        with pytest.raises(DragStateError, match="does not own"):
            second._finish(session, commit=True)
        assert session.active

    def test_connection_drag_never_persists(self, store, make_block, controller, recorder) -> None:
        make_block("b1", x=0, y=0)
        with patch.object(store, "update_block_position") as persist:
            with controller.drag("b1", kind=DragKind.CONNECTION) as session:
                session.move(40, 40)

        persist.assert_not_called()
        assert controller.positions.get_position("b1") is None
        assert recorder.of(DRAG_END)[0].position == Position(40, 40)

    def test_pan_drag_by_name(self, controller) -> None:
        session = controller.begin_drag("canvas", kind="pan")
        assert session.kind is DragKind.PAN
        assert session.origin is None
        session.release()


# ---------------------------------------------------------------------------
# Deferred sync traffic
# ---------------------------------------------------------------------------


class TestDeferral:
    def test_invalidation_immediate_when_idle(self, controller, recorder) -> None:
        assert controller.request_invalidation("k") is True
        event = recorder.of(INVALIDATE)[0]
        assert event.key == "k"
        assert event.deferred is False

    def test_invalidations_deferred_and_deduplicated(self, make_block, controller, recorder) -> None:
        make_block("b1")
        session = controller.begin_drag("b1")

        assert controller.request_invalidation("a") is False
        assert controller.request_invalidation("b") is False
        assert controller.request_invalidation("a") is False
        assert recorder.of(INVALIDATE) == []
        assert controller.pending_invalidations() == ["a", "b"]

        session.release()

        flushed = recorder.of(INVALIDATE)
        assert [e.key for e in flushed] == ["a", "b"]
        assert all(e.deferred for e in flushed)
        assert controller.pending_invalidations() == []

    def test_flush_after_drag_end(self, make_block, controller, recorder) -> None:
        make_block("b1")
        session = controller.begin_drag("b1")
        controller.request_invalidation("a")
        session.release()

        names = [name for name, _ in recorder.events]
        assert names.index(DRAG_END) < names.index(INVALIDATE)

    def test_non_critical_notifications_dropped(self, make_block, controller, recorder) -> None:
        make_block("b1")
        session = controller.begin_drag("b1")

        assert controller.notify("Saved") is False
        assert controller.notify("Connection lost", critical=True) is True
        session.release()
        assert controller.notify("Saved") is True

        assert [(n.message, n.critical) for n in recorder.of(NOTIFY)] == [
            ("Connection lost", True),
            ("Saved", False),
        ]

    def test_server_positions_deferred(self, make_block, controller) -> None:
        """Should not let a server push move the dragged block."""
        make_block("b1")
        make_block("b2")
        session = controller.begin_drag("b1")
        session.move(10, 10)

        applied = controller.apply_server_positions({"b1": Position(-1, -1), "b2": Position(5, 5)})
        assert applied is False
        assert controller.positions.get_position("b2") is None

        session.release()

        assert controller.positions.get_position("b1") == Position(10, 10)
        assert controller.positions.get_position("b2") == Position(5, 5)

    def test_server_positions_immediate_when_idle(self, controller) -> None:
        assert controller.apply_server_positions({"b1": Position(1, 2)}) is True
        assert controller.positions.get_position("b1") == Position(1, 2)


# ---------------------------------------------------------------------------
# Board sync
# ---------------------------------------------------------------------------


class TestBoardSync:
    def test_load_board(self, make_block, controller) -> None:
        make_block("b1", x=1, y=1)
        make_block("b2", x=2, y=2)
        assert controller.load_board("board-1") == 2
        assert controller.positions.get_position("b2") == Position(2, 2)

    def test_read_position(self, make_block, controller) -> None:
        make_block("b1", x=4, y=4)
        assert controller.read_position("b1") == Position(4, 4)
        controller.positions.set_position("b1", 9, 9)
        assert controller.read_position("b1") == Position(9, 9)
        assert controller.read_position("missing") is None

    def test_message_inserted_invalidates_targets(self, store, make_block, controller, recorder) -> None:
        for block_id in ("a", "b", "c", "d"):
            make_block(block_id)
        store.add_connection(Connection(id="ab", source_block_id="a", target_block_id="b"))
        store.add_connection(Connection(id="ac", source_block_id="a", target_block_id="c", enabled=False))
        store.add_connection(Connection(id="da", source_block_id="d", target_block_id="a"))

        keys = controller.on_message_inserted("a")

        assert keys == [incoming_context_key("b")]
        assert [e.key for e in recorder.of(INVALIDATE)] == ["block-incoming-context:b"]

    def test_connections_changed(self, controller, recorder) -> None:
        controller.on_connections_changed()
        assert recorder.of(INVALIDATE)[0].key == CONNECTIONS_KEY
