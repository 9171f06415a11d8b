from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport, AsyncClient


class Collector:
    """In-process collection endpoint. Records every batch it is sent."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.batches: list[dict[str, Any]] = []
        self.headers: list[dict[str, str]] = []
        self.app = FastAPI()

        @self.app.post("/api/collect")
        async def collect(request: Request) -> JSONResponse:
            body = await request.json()
            self.batches.append(body)
            self.headers.append(dict(request.headers))
            return JSONResponse({"ok": self.status_code < 400}, status_code=self.status_code)

    @property
    def events(self) -> list[dict[str, Any]]:
        return [e for batch in self.batches for e in batch["events"]]


def make_client(app: FastAPI) -> AsyncClient:
    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test")
