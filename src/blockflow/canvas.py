"""
Drag position store and canvas sync controller.

While the user drags something on the canvas, positions update in memory
only and the canvas suspends the background work that would otherwise fight
the drag: cache refetches and non-critical notifications. Releasing the drag
persists the final geometry once, lifts the suspension and flushes whatever
was deferred.

Only one drag can be active at a time. The drag is a scoped resource:
``CanvasSyncController.drag`` always lifts the suspension on exit, also
when the body raises or is cancelled.

Example:
    controller = CanvasSyncController(store, bus=bus)

    with controller.drag("block-1") as session:
        for x, y in pointer_moves:
            session.move(x, y)
    # final position persisted, deferred invalidations flushed
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from enum import Enum

from blockflow.errors import DragStateError
from blockflow.events import (
    DRAG_END,
    DRAG_START,
    INVALIDATE,
    NOTIFY,
    DragEndEvent,
    DragStartEvent,
    EventBus,
    InvalidateEvent,
    NotifyEvent,
)
from blockflow.logging import get_logger
from blockflow.models import Position
from blockflow.store.base import GraphStore

logger = get_logger("canvas")


class DragKind(str, Enum):
    BLOCK = "block"
    CONNECTION = "connection"
    PAN = "pan"


class DragPhase(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


def incoming_context_key(block_id: str) -> str:
    """Cache key of a block's assembled incoming context."""
    return f"block-incoming-context:{block_id}"


CONNECTIONS_KEY = "connections"


# ---------------------------------------------------------------------------
# Position store
# ---------------------------------------------------------------------------


class DragPositionStore:
    """In-memory block positions for immediate feedback. Never persisted."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._positions: dict[str, Position] = {}

    def set_position(self, entity_id: str, x: float, y: float) -> None:
        with self._lock:
            self._positions[entity_id] = Position(x, y)

    def get_position(self, entity_id: str) -> Position | None:
        return self._positions.get(entity_id)

    def initialize(self, positions: Mapping[str, Position], overwrite: bool = False) -> None:
        """Seed positions; existing entries are kept unless ``overwrite``."""
        with self._lock:
            for entity_id, position in positions.items():
                if overwrite or entity_id not in self._positions:
                    self._positions[entity_id] = Position(position.x, position.y)

    def remove(self, entity_id: str) -> None:
        with self._lock:
            self._positions.pop(entity_id, None)

    def clear(self) -> None:
        with self._lock:
            self._positions.clear()

    def snapshot(self) -> dict[str, Position]:
        with self._lock:
            return dict(self._positions)

    def __len__(self) -> int:
        return len(self._positions)


# ---------------------------------------------------------------------------
# Drag session
# ---------------------------------------------------------------------------


class DragSession:
    """
    One active drag, handed out by ``CanvasSyncController.begin_drag``.

    ``release`` and ``cancel`` are idempotent; after either, ``move`` raises.
    """

    def __init__(
        self,
        controller: CanvasSyncController,
        entity_id: str,
        kind: DragKind,
        origin: Position | None,
    ) -> None:
        self._controller = controller
        self.entity_id = entity_id
        self.kind = kind
        self.origin = origin
        self.current: Position | None = None
        self.phase = DragPhase.DRAGGING
        self.committed = False

    @property
    def active(self) -> bool:
        return self.phase is DragPhase.DRAGGING

    @property
    def moved(self) -> bool:
        return self.current is not None and self.current != self.origin

    def move(self, x: float, y: float) -> None:
        """Record a pointer move. Touches only in-memory state."""
        if not self.active:
            raise DragStateError(f"Drag on {self.entity_id} is no longer active")
        self.current = Position(x, y)
        if self.kind is DragKind.BLOCK:
            self._controller.positions.set_position(self.entity_id, x, y)

    def release(self) -> Position | None:
        """Finish the drag, persisting the final block position if it moved."""
        return self._controller._finish(self, commit=True)

    def cancel(self) -> None:
        """Abort the drag, restoring the origin without persisting."""
        self._controller._finish(self, commit=False)

    def __enter__(self) -> DragSession:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        if exc_type is None:
            self.release()
        else:
            self.cancel()

    def __repr__(self) -> str:
        return f"DragSession({self.kind.value}:{self.entity_id}, {self.phase.value})"


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class CanvasSyncController:
    """
    Coordinates drags with cache invalidation and notifications.

    Thread Safety:
        The suspend flag (the active session), the deferred invalidations and
        the deferred server positions are guarded by one lock. Persistence
        and event delivery happen outside it.
    """

    def __init__(
        self,
        store: GraphStore,
        positions: DragPositionStore | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.store = store
        self.positions = positions or DragPositionStore()
        self.bus = bus or EventBus()
        self._lock = threading.Lock()
        self._active: DragSession | None = None
        self._deferred_keys: dict[str, None] = {}
        self._deferred_positions: dict[str, Position] = {}

    # -- state --------------------------------------------------------------

    @property
    def is_suspended(self) -> bool:
        return self._active is not None

    @property
    def active_drag(self) -> DragSession | None:
        return self._active

    def should_refetch(self) -> bool:
        """Background refetches run only while no drag is active."""
        return self._active is None

    def pending_invalidations(self) -> list[str]:
        with self._lock:
            return list(self._deferred_keys)

    # -- drag lifecycle -----------------------------------------------------

    def begin_drag(
        self,
        entity_id: str,
        kind: DragKind | str = DragKind.BLOCK,
        origin: Position | None = None,
    ) -> DragSession:
        """
        Start a drag and suspend background work.

        Raises:
            DragStateError: If another drag is already active.
        """
        kind = DragKind(kind)
        if origin is None and kind is DragKind.BLOCK:
            origin = self.read_position(entity_id)

        with self._lock:
            if self._active is not None:
                raise DragStateError(
                    f"Cannot drag {entity_id}: {self._active.kind.value} drag on "
                    f"{self._active.entity_id} is in progress"
                )
            session = DragSession(self, entity_id, kind, origin)
            self._active = session

        logger.debug("Drag started: %s %s", kind.value, entity_id)
        self.bus.emit_sync(DRAG_START, DragStartEvent(entity_id=entity_id, kind=kind.value, origin=origin))
        return session

    @contextmanager
    def drag(
        self,
        entity_id: str,
        kind: DragKind | str = DragKind.BLOCK,
        origin: Position | None = None,
    ) -> Iterator[DragSession]:
        """
        Scoped drag: released on normal exit, cancelled on any exception.

        Cancellation (``KeyboardInterrupt``, task cancellation) also cancels
        the drag, so the suspension is always lifted.
        """
        session = self.begin_drag(entity_id, kind, origin)
        try:
            yield session
        except BaseException:
            session.cancel()
            raise
        else:
            session.release()

    def _finish(self, session: DragSession, commit: bool) -> Position | None:
        with self._lock:
            if not session.active:
                return session.current if session.committed else None
            if self._active is not session:
                raise DragStateError(f"Drag on {session.entity_id} does not own the canvas")
            session.phase = DragPhase.IDLE

        final: Position | None = None
        try:
            if session.kind is DragKind.BLOCK:
                if commit and session.moved:
                    final = session.current
                    self.store.update_block_position(session.entity_id, final)
                    logger.debug("Persisted %s at (%s, %s)", session.entity_id, final.x, final.y)
                elif not commit and session.origin is not None:
                    self.positions.set_position(session.entity_id, session.origin.x, session.origin.y)
                elif not commit:
                    self.positions.remove(session.entity_id)
            elif commit:
                final = session.current
            session.committed = commit
        finally:
            with self._lock:
                self._active = None
                keys = list(self._deferred_keys)
                self._deferred_keys.clear()
                server_positions = dict(self._deferred_positions)
                self._deferred_positions.clear()

            if commit and session.kind is DragKind.BLOCK:
                server_positions.pop(session.entity_id, None)
            if server_positions:
                self.positions.initialize(server_positions, overwrite=True)

            self.bus.emit_sync(
                DRAG_END,
                DragEndEvent(
                    entity_id=session.entity_id,
                    kind=session.kind.value,
                    position=final,
                    committed=commit,
                ),
            )
            for key in keys:
                self.bus.emit_sync(INVALIDATE, InvalidateEvent(key=key, deferred=True))
            logger.debug(
                "Drag %s: %s %s (%d deferred invalidations flushed)",
                "released" if commit else "cancelled",
                session.kind.value,
                session.entity_id,
                len(keys),
            )
        return final

    # -- sync traffic -------------------------------------------------------

    def request_invalidation(self, key: str) -> bool:
        """
        Invalidate a cached query now, or defer it until the drag ends.

        Returns True if the invalidation was delivered immediately.
        """
        with self._lock:
            if self._active is not None:
                self._deferred_keys[key] = None
                return False
        self.bus.emit_sync(INVALIDATE, InvalidateEvent(key=key))
        return True

    def notify(self, message: str, critical: bool = False) -> bool:
        """
        Show a notification. Non-critical ones are dropped during a drag.

        Returns True if the notification was delivered.
        """
        if self._active is not None and not critical:
            logger.debug("Notification suppressed during drag: %s", message)
            return False
        self.bus.emit_sync(NOTIFY, NotifyEvent(message=message, critical=critical))
        return True

    def apply_server_positions(self, positions: Mapping[str, Position]) -> bool:
        """
        Take block positions pushed by the server.

        Deferred while a drag is active so the dragged block does not jump.
        Returns True if applied immediately.
        """
        with self._lock:
            if self._active is not None:
                self._deferred_positions.update(positions)
                return False
        self.positions.initialize(positions, overwrite=True)
        return True

    def load_board(self, board_id: str) -> int:
        """Seed the position map from a board's persisted blocks."""
        blocks = self.store.list_blocks(board_id)
        self.positions.initialize({b.id: b.position for b in blocks})
        return len(blocks)

    def read_position(self, entity_id: str) -> Position | None:
        """In-memory position first, then the persisted one."""
        position = self.positions.get_position(entity_id)
        if position is not None:
            return position
        try:
            return self.store.get_block(entity_id).position
        except KeyError:
            return None

    def on_message_inserted(self, block_id: str) -> list[str]:
        """
        A block got a new message: every block it feeds needs fresh context.

        Returns the invalidated (or deferred) keys.
        """
        keys = [
            incoming_context_key(c.target_block_id)
            for c in self.store.list_connections(block_id)
            if c.source_block_id == block_id and c.enabled
        ]
        for key in keys:
            self.request_invalidation(key)
        return keys

    def on_connections_changed(self) -> None:
        self.request_invalidation(CONNECTIONS_KEY)
