"""FastAPI adapter — streams generation events as SSE and exposes engine status endpoints."""

from __future__ import annotations

import json
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from nano_orchestrator import create_controller
from nano_orchestrator.engine.errors import ConfigValidationError
from nano_orchestrator.engine.models import GenerationRequest

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    controller = create_controller()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await controller.init()
        yield
        await controller.shutdown()

    app = FastAPI(title="Nano Orchestrator API", version="0.1.0", lifespan=lifespan)
    app.state.controller = controller

    @app.post("/generate", response_model=None)
    async def generate(request: Request) -> StreamingResponse | JSONResponse:
        body = await request.json()
        try:
            gen_request = GenerationRequest(**body)
        except (ConfigValidationError, ValidationError) as exc:
            logger.warning("Rejected generate request: %s", exc)
            return JSONResponse({"error": str(exc)}, status_code=422)

        async def sse_stream():
            async for event in controller.generate(gen_request):
                payload = json.dumps(event.model_dump(mode="json"), default=str)
                yield f"event: {event.type.value}\ndata: {payload}\n\n"

        return StreamingResponse(
            sse_stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    @app.post("/cancel")
    async def cancel(conversation_id: str | None = None) -> JSONResponse:
        return JSONResponse({"cancelled": controller.cancel(conversation_id)})

    @app.post("/reset")
    async def reset(conversation_id: str | None = None) -> JSONResponse:
        await controller.reset(conversation_id)
        return JSONResponse({"status": "ok"})

    @app.get("/availability")
    async def availability(force: bool = False) -> JSONResponse:
        report = await controller.check_availability(force_check=force)
        return JSONResponse(report.model_dump(mode="json"))

    @app.post("/warmup")
    async def warmup() -> JSONResponse:
        result = await controller.warm_up()
        return JSONResponse(result.model_dump(mode="json"))

    @app.get("/diagnostics")
    async def diagnostics() -> JSONResponse:
        record = await controller.get_diagnostics()
        return JSONResponse(record.model_dump(mode="json"))

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok", "generating": controller.is_generating})

    return app


# Module-level instance for ``uvicorn nano_orchestrator.adapters.web_fastapi.app:app``
app = create_app()


def serve() -> None:
    """Entry-point for ``nano-web`` console script."""
    import uvicorn

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    uvicorn.run(
        "nano_orchestrator.adapters.web_fastapi.app:app",
        host=os.environ.get("NANO_HOST", "127.0.0.1"),
        port=int(os.environ.get("NANO_PORT", "8000")),
        log_level="info",
    )
