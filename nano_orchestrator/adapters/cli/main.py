"""Command-line adapter — runs one prompt (argv or stdin) and prints GenerationEvents as JSON lines."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import uuid

from nano_orchestrator import create_controller
from nano_orchestrator.engine.errors import ConfigValidationError
from nano_orchestrator.engine.models import GenerationRequest, SamplingConfig


def _env_number(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigValidationError(f"{name} must be a number, got {raw!r}") from exc


async def run_cli(text: str, conversation_id: str = "cli-default", context: str = "") -> None:
    controller = create_controller()
    await controller.init()
    try:
        request = GenerationRequest(
            conversation_id=conversation_id,
            prompt_text=text,
            context_text=context,
            sampling=SamplingConfig.from_settings({
                "temperature": _env_number("NANO_TEMPERATURE", "1.0", float),
                "topK": _env_number("NANO_TOP_K", "64", int),
            }),
        )
        async for event in controller.generate(request):
            print(json.dumps(event.model_dump(mode="json"), default=str), flush=True)
    finally:
        await controller.shutdown()


async def run_status(force: bool) -> None:
    controller = create_controller()
    await controller.init()
    try:
        report = await controller.check_availability(force_check=force)
        print(json.dumps(report.model_dump(mode="json"), indent=2))
    finally:
        await controller.shutdown()


async def run_warmup() -> None:
    controller = create_controller()
    await controller.init()

    def _progress(loaded: float, total: float) -> None:
        print(json.dumps({"event": "download", "loaded": loaded, "total": total}), flush=True)

    try:
        # No engine is a normal state; warm_up records it as unavailable
        if controller.provider.is_present:
            await controller.ensure_downloaded(_progress)
        result = await controller.warm_up()
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    finally:
        await controller.shutdown()


def main() -> None:
    parser = argparse.ArgumentParser(prog="nano-cli", description="Run a prompt against the local model.")
    parser.add_argument("text", nargs="*", help="prompt text (read from stdin when omitted)")
    parser.add_argument("--conversation", default=None, help="conversation id (default: new)")
    parser.add_argument("--context", default="", help="page context text")
    parser.add_argument("--status", action="store_true", help="print engine availability and exit")
    parser.add_argument("--force", action="store_true", help="with --status: bypass the cached status")
    parser.add_argument("--warmup", action="store_true", help="download if needed, prime, and exit")
    args = parser.parse_args()

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "WARNING"), stream=sys.stderr)

    if args.status:
        asyncio.run(run_status(args.force))
        return
    if args.warmup:
        asyncio.run(run_warmup())
        return

    if args.text:
        text = " ".join(args.text)
    else:
        raw = sys.stdin.read().strip()
        if not raw:
            print("Usage: nano-cli <text>  OR  echo '{\"text\":\"...\"}' | nano-cli", file=sys.stderr)
            sys.exit(1)
        try:
            data = json.loads(raw)
            text = data.get("text", raw)
        except (json.JSONDecodeError, AttributeError):
            text = raw

    asyncio.run(run_cli(text, conversation_id=args.conversation or f"cli-{uuid.uuid4().hex[:8]}", context=args.context))


if __name__ == "__main__":
    main()
