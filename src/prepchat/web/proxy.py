from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask

logger = logging.getLogger(__name__)

PROXY_PATH = "/api/proxy"

ALLOWED_HEADERS = [
    "X-CSRF-Token", "X-Requested-With", "Accept", "Accept-Version", "Content-Length",
    "Content-MD5", "Content-Type", "Date", "X-Api-Version", "Authorization",
    "x-api-key", "anthropic-version", "x-goog-api-key",
]


class ProxyRequest(BaseModel):
    target: Optional[str] = None
    data: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)
    stream: bool = False


def _relay(resp: httpx.Response) -> Response:
    """Hand the upstream status and body back unchanged."""
    try:
        return JSONResponse(resp.json(), status_code=resp.status_code)
    except ValueError:
        return Response(
            content=resp.content,
            status_code=resp.status_code,
            media_type=resp.headers.get("content-type", "text/plain"),
        )


def create_app(*, client: Optional[httpx.Client] = None, timeout: Optional[float] = 120.0) -> FastAPI:
    """
    Same-origin relay for proxied transport mode: the browser-facing side never
    holds provider endpoints, the request envelope carries them here.
    """
    app = FastAPI(title="prepchat proxy")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS", "PATCH", "DELETE", "POST", "PUT"],
        allow_headers=ALLOWED_HEADERS,
    )
    app.state.client = client or httpx.Client(timeout=timeout)

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    @app.api_route(PROXY_PATH, methods=["GET", "PUT", "PATCH", "DELETE"])
    def proxy_wrong_method():
        return JSONResponse({"error": "Method not allowed"}, status_code=405)

    @app.post(PROXY_PATH)
    def proxy(req: ProxyRequest):
        if not req.target:
            return JSONResponse({"error": "Target URL is required"}, status_code=400)

        http: httpx.Client = app.state.client
        if not req.stream:
            try:
                resp = http.post(req.target, json=req.data, headers=req.headers)
            except httpx.HTTPError as e:
                logger.error("Proxy request to %s failed: %s", req.target, e)
                return JSONResponse({"error": str(e)}, status_code=500)
            return _relay(resp)

        upstream = http.build_request("POST", req.target, json=req.data, headers=req.headers)
        try:
            resp = http.send(upstream, stream=True)
        except httpx.HTTPError as e:
            logger.error("Proxy stream to %s failed: %s", req.target, e)
            return JSONResponse({"error": str(e)}, status_code=500)

        if not resp.is_success:
            resp.read()
            resp.close()
            return _relay(resp)

        return StreamingResponse(
            resp.iter_raw(),
            status_code=resp.status_code,
            media_type=resp.headers.get("content-type", "text/event-stream"),
            background=BackgroundTask(resp.close),
        )

    return app


def run(*, host: str = "127.0.0.1", port: int = 8000, timeout: Optional[float] = 120.0, reload: bool = False) -> None:
    import uvicorn

    app = create_app(timeout=timeout)
    uvicorn.run(app, host=host, port=port, reload=reload)
