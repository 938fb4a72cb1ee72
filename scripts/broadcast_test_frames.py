"""Broadcast sample simulation frames to every connected viewer client.

Usage:
    python scripts/broadcast_test_frames.py [--host 127.0.0.1] [--port 8000] [--interval 1.0]

Sends the greeting as plain text on connect, then a replace of ``name`` and
``age``, the mesh/geometry/value_on_mesh fields, and a growing ``res`` /
``force`` append series every interval.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import math
import random
import time
from typing import Any, Dict, Set

import websockets

CLIENTS: Set[Any] = set()


def frame(field: str, value: Any, *, kind: str = "replace") -> str:
    return json.dumps({"type": kind, "field": field, "value": value, "timestamp": time.time()})


def sample_mesh(size: int = 4, dx: float = 0.5) -> Dict[str, Any]:
    points = [[ix * dx, iy * dx] for iy in range(size) for ix in range(size)]
    return {"region1": {"dx": dx, "normal": [0, 0, 1], "points": points}}


def sample_geometry(size: int = 4, dx: float = 0.5) -> Dict[str, Any]:
    low = -dx / 2
    high = (size - 0.5) * dx
    return {
        "south": [[[low, low], [high, low]]],
        "east": [[[high, low], [high, high]]],
        "north": [[[high, high], [low, high]]],
        "west": [[[low, high], [low, low]]],
    }


def sample_values(step: int, size: int = 4) -> Dict[str, Any]:
    temp = [math.sin(0.3 * step + index) for index in range(size * size)]
    return {"temp": {"region1": temp}}


async def handler(websocket: Any) -> None:
    CLIENTS.add(websocket)
    print(f"Client connected. Total clients: {len(CLIENTS)}")
    try:
        await websocket.send("Hello from the test broadcaster")
        await websocket.send(frame("name", "Simulation"))
        await websocket.send(frame("age", "21"))
        await websocket.send(frame("mesh", sample_mesh()))
        await websocket.send(frame("geometry", sample_geometry()))
        async for message in websocket:
            print(f"Received message: {message}")
    except websockets.ConnectionClosed:
        pass
    finally:
        CLIENTS.discard(websocket)
        print(f"Client disconnected. Total clients: {len(CLIENTS)}")


async def broadcast_loop(interval: float, batch: int) -> None:
    step = 0
    while True:
        await asyncio.sleep(interval)
        if not CLIENTS:
            continue
        residuals = {
            "max": [10 ** (-0.05 * (step * batch + i)) * (1 + random.random()) for i in range(batch)],
            "rms": [10 ** (-0.06 * (step * batch + i)) for i in range(batch)],
        }
        forces = {"cd": [1.2 + 0.01 * random.random() for _ in range(batch)]}
        websockets.broadcast(CLIENTS, frame("res", residuals, kind="append"))
        websockets.broadcast(CLIENTS, frame("force", forces, kind="append"))
        websockets.broadcast(CLIENTS, frame("value_on_mesh", sample_values(step)))
        step += 1


async def serve(host: str, port: int, interval: float, batch: int) -> None:
    async with websockets.serve(handler, host, port):
        print(f"Broadcasting on ws://{host}:{port}")
        await broadcast_loop(interval, batch)


def main() -> int:
    parser = argparse.ArgumentParser(description="Sample frame broadcaster for the viewer client")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--interval", type=float, default=1.0)
    parser.add_argument("--batch", type=int, default=5, help="Series samples appended per interval")
    args = parser.parse_args()
    try:
        asyncio.run(serve(args.host, args.port, args.interval, args.batch))
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
