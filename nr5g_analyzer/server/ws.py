"""WebSocket stream of state snapshots."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from nr5g_analyzer.engine import Engine
from nr5g_analyzer.protocol import state_to_wire
from nr5g_analyzer.state import AnalyzerState

logger = logging.getLogger(__name__)

router = APIRouter()


@dataclass
class _ClientSession:
    websocket: WebSocket
    queue: asyncio.Queue[dict[str, Any]]
    session_id: uuid.UUID
    seq: int = 0
    dropped: int = 0

    def next_seq(self) -> int:
        self.seq += 1
        return self.seq


class _SnapshotHub:
    """Fan out engine state snapshots to multiple WebSocket clients."""

    def __init__(self, engine: Engine, loop: asyncio.AbstractEventLoop) -> None:
        self._engine = engine
        self._loop = loop
        self._clients: list[_ClientSession] = []
        self._engine.subscribe(self.publish)

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def register(self, session: _ClientSession) -> None:
        self._clients.append(session)

    def unregister(self, session: _ClientSession) -> None:
        if session in self._clients:
            self._clients.remove(session)

    def close(self) -> None:
        self._engine.unsubscribe(self.publish)

    def publish(self, snapshot: AnalyzerState) -> None:
        # Engine callbacks run on timer and bridge threads, so hop back to the event loop.
        if not self._clients or self._loop.is_closed():
            return
        payload = state_to_wire(snapshot)
        self._loop.call_soon_threadsafe(self._enqueue, payload)

    def _enqueue(self, payload: dict[str, Any]) -> None:
        for session in list(self._clients):
            try:
                session.queue.put_nowait(payload)
            except asyncio.QueueFull:
                # Slow client; drop this snapshot, the next one supersedes it.
                session.dropped += 1
                logger.debug("Dropped snapshot for session %s (%d total)", session.session_id, session.dropped)


def _get_hub(websocket: WebSocket) -> _SnapshotHub:
    app = websocket.app
    hub = getattr(app.state, "ws_hub", None)
    loop = asyncio.get_running_loop()
    if hub is None or hub.loop is not loop:
        if hub is not None:
            hub.close()
        hub = _SnapshotHub(app.state.engine, loop)
        app.state.ws_hub = hub
    return hub


async def _send_snapshot(session: _ClientSession, payload: dict[str, Any]) -> None:
    await session.websocket.send_json(
        {
            "type": "state",
            "seq": session.next_seq(),
            "sessionId": str(session.session_id),
            "payload": payload,
        }
    )


@router.websocket("/ws/state")
async def stream(websocket: WebSocket) -> None:
    await websocket.accept()
    session = _ClientSession(
        websocket=websocket,
        queue=asyncio.Queue(maxsize=64),
        session_id=uuid.uuid4(),
    )
    engine: Engine = websocket.app.state.engine

    # Join the broadcast before reading the current snapshot so no patch is missed.
    hub = _get_hub(websocket)
    hub.register(session)

    try:
        await _send_snapshot(session, state_to_wire(engine.state))
        while True:
            payload = await session.queue.get()
            await _send_snapshot(session, payload)
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(session)
