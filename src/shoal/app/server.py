from __future__ import annotations

import asyncio
import json
import logging
import math
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, replace
from typing import Any, AsyncIterator, Deque, Dict, List

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from ..sim.core.config import FlockingOptions, SimulationConfig
from ..sim.core.world import World

logger = logging.getLogger(__name__)

MIN_SPEED_MULTIPLIER = 0.1
MAX_SPEED_MULTIPLIER = 5.0


@dataclass(frozen=True)
class Frame:
    tick: int
    payload: str


class SnapshotStream:
    """
    Fan-out of serialized world frames to websocket clients.

    Frames are only buffered while at least one client is connected, and only until
    every client has been sent them. A client whose last acknowledgement is
    `max_in_flight` ticks behind what it was sent is held back; the buffer never
    holds more than `max_pending` frames.
    """

    def __init__(self, max_pending: int = 120, max_in_flight: int = 30):
        if max_pending < 1 or max_in_flight < 1:
            raise ValueError("max_pending and max_in_flight must be at least 1")
        self.max_in_flight = max_in_flight
        self._pending: Deque[Frame] = deque(maxlen=max_pending)
        self._latest: Frame | None = None
        self._last_sent: Dict[WebSocket, int] = {}
        self._acked: Dict[WebSocket, int] = {}
        self._lock = asyncio.Lock()

    @property
    def clients(self) -> List[WebSocket]:
        return list(self._last_sent)

    @property
    def latest(self) -> Frame | None:
        return self._latest

    def pending_ticks(self) -> List[int]:
        return [frame.tick for frame in self._pending]

    async def connect(self, client: WebSocket) -> None:
        async with self._lock:
            latest = self._latest
            baseline = -1 if latest is None else latest.tick
            self._last_sent[client] = -1
            # The catch-up frame counts as acknowledged.
            self._acked[client] = baseline
        if latest is not None:
            await client.send_text(latest.payload)
            self._last_sent[client] = latest.tick

    def disconnect(self, client: WebSocket) -> None:
        self._last_sent.pop(client, None)
        self._acked.pop(client, None)
        if not self._last_sent:
            self._pending.clear()

    def acknowledge(self, client: WebSocket, tick: int) -> None:
        if client in self._acked:
            self._acked[client] = max(self._acked[client], tick)

    async def restart(self) -> None:
        """Forget every frame; used when the world is rebuilt and ticks restart at zero."""
        async with self._lock:
            self._pending.clear()
            self._latest = None
            for client in self._last_sent:
                self._last_sent[client] = -1
                self._acked[client] = -1

    async def publish(self, frame: Frame) -> None:
        async with self._lock:
            self._latest = frame
            if not self._last_sent:
                return
            self._pending.append(frame)
        for client in self.clients:
            try:
                await self._flush(client)
            except WebSocketDisconnect:
                logger.info("Dropping disconnected websocket client")
                self.disconnect(client)
        self._prune()

    async def _flush(self, client: WebSocket) -> None:
        last_sent = self._last_sent.get(client, -1)
        if last_sent - self._acked.get(client, -1) >= self.max_in_flight:
            logger.debug("Client is %d ticks behind its acknowledgements; holding frames", last_sent - self._acked[client])
            return
        for frame in list(self._pending):
            if frame.tick <= last_sent:
                continue
            await client.send_text(frame.payload)
            last_sent = frame.tick
        self._last_sent[client] = last_sent

    def _prune(self) -> None:
        if not self._last_sent:
            self._pending.clear()
            return
        delivered = min(self._last_sent.values())
        while self._pending and self._pending[0].tick <= delivered:
            self._pending.popleft()


class SimulationController:
    def __init__(self, config: SimulationConfig, broadcast_interval: int = 1, stream: SnapshotStream | None = None):
        self.config = config
        self.world = World(config)
        self.broadcast_interval = max(1, broadcast_interval)
        self.stream = stream if stream is not None else SnapshotStream()
        self.running = False
        self.tick = 0
        self.speed_multiplier = 1.0
        self._lock = asyncio.Lock()
        self._loop_task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self._loop())
        self.running = True

    async def stop(self) -> None:
        self.running = False

    async def shutdown(self) -> None:
        self.running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

    async def reset(self, seed: int | None = None) -> None:
        """Rebuild the population; a new `seed` replaces the configured one."""
        async with self._lock:
            if seed is not None and seed != self.config.seed:
                self.config = replace(self.config, seed=int(seed))
                self.world = World(self.config)
            else:
                self.world.reset()
            self.tick = 0
        await self.stream.restart()
        await self.stream.publish(self.frame())

    async def resize(self, width: float, height: float) -> None:
        async with self._lock:
            self.world.resize(width, height)

    async def configure_flocking(self, **changes: Any) -> FlockingOptions:
        """Swap the flocking options used from the next tick on."""
        options = replace(self.config.flocking, **changes)
        async with self._lock:
            self.config.flocking = options
        logger.info("Flocking options changed to %s", options)
        return options

    def set_speed(self, multiplier: float) -> float:
        if not math.isfinite(multiplier) or multiplier <= 0.0:
            raise ValueError(f"speed multiplier must be a positive finite number, got {multiplier!r}")
        self.speed_multiplier = max(MIN_SPEED_MULTIPLIER, min(MAX_SPEED_MULTIPLIER, multiplier))
        return self.speed_multiplier

    def status(self) -> Dict[str, Any]:
        snapshot = self.world.snapshot(self.tick)
        options = self.config.flocking
        return {
            "running": self.running,
            "tick": self.tick,
            "speed_multiplier": self.speed_multiplier,
            "population": len(self.world.entities),
            "clients": len(self.stream.clients),
            "world": asdict(snapshot.world),
            "flocking": {
                "field_of_view_mode": options.field_of_view_mode.value,
                "avoidance_mode": options.avoidance_mode.value,
                "cell_size": options.cell_size,
                "strict": options.strict,
            },
            "metrics": asdict(snapshot.metrics),
        }

    def frame(self) -> Frame:
        snapshot = self.world.snapshot(self.tick)
        message = {
            "type": "snapshot",
            "tick": snapshot.tick,
            "payload": {
                "tick": snapshot.tick,
                "metrics": asdict(snapshot.metrics),
                "agents": snapshot.agents,
                "world": asdict(snapshot.world),
                "metadata": asdict(snapshot.metadata),
            },
        }
        return Frame(tick=snapshot.tick, payload=json.dumps(message))

    async def advance(self) -> None:
        async with self._lock:
            self.world.step(self.tick)
            self.tick += 1
            frame = self.frame() if self.tick % self.broadcast_interval == 0 else None
        if frame is not None:
            await self.stream.publish(frame)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.time_step / self.speed_multiplier)
            if self.running:
                await self.advance()


controller = SimulationController(SimulationConfig())


@asynccontextmanager
async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
    await controller.start()
    try:
        yield
    finally:
        await controller.shutdown()


app = FastAPI(title="Shoal Flocking Simulation", lifespan=_lifespan)


def _bad_request(exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.get("/api/status")
async def status() -> JSONResponse:
    return JSONResponse(controller.status())


@app.post("/api/control/start")
async def start_simulation() -> JSONResponse:
    await controller.start()
    return JSONResponse({"running": True})


@app.post("/api/control/stop")
async def stop_simulation() -> JSONResponse:
    await controller.stop()
    return JSONResponse({"running": False})


@app.post("/api/control/reset")
async def reset_simulation(payload: Dict[str, Any] | None = None) -> JSONResponse:
    seed = (payload or {}).get("seed")
    if seed is not None and not isinstance(seed, int):
        return _bad_request(ValueError(f"seed must be an integer, got {seed!r}"))
    await controller.reset(seed)
    return JSONResponse({"running": controller.running, "tick": controller.tick, "seed": controller.config.seed})


@app.post("/api/control/speed")
async def set_speed(payload: Dict[str, Any]) -> JSONResponse:
    try:
        multiplier = controller.set_speed(float(payload.get("multiplier", 1.0)))
    except (TypeError, ValueError) as exc:
        return _bad_request(exc)
    return JSONResponse({"multiplier": multiplier})


@app.post("/api/control/resize")
async def resize_world(payload: Dict[str, Any]) -> JSONResponse:
    try:
        width = float(payload["width"])
        height = float(payload["height"])
        await controller.resize(width, height)
    except (KeyError, TypeError, ValueError) as exc:
        return _bad_request(exc)
    return JSONResponse({"width": width, "height": height})


@app.post("/api/control/flocking")
async def configure_flocking(payload: Dict[str, Any]) -> JSONResponse:
    try:
        await controller.configure_flocking(**payload)
    except (TypeError, ValueError) as exc:
        return _bad_request(exc)
    return JSONResponse(controller.status()["flocking"])


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    stream = controller.stream
    await stream.connect(websocket)
    try:
        while True:
            message = await websocket.receive_text()
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                logger.debug("Ignoring malformed websocket message")
                continue
            if isinstance(payload, dict) and payload.get("type") == "ack":
                tick = payload.get("tick")
                if isinstance(tick, int):
                    stream.acknowledge(websocket, tick)
    except WebSocketDisconnect:
        stream.disconnect(websocket)


__all__ = ["app", "controller"]
