"""
CLI entry point.

Operator commands:
- select: show which provider/model a request would be routed to
- run: push one task message through a processor and print the response
- providers: list provider credential status
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import uuid
from typing import Any, Dict, Optional

from dotenv import find_dotenv, load_dotenv

from aiworker.application.services.fallback_coordinator import fallback_chain_from_env
from aiworker.application.services.provider_selector import select_provider
from aiworker.application.services.task_processor import TaskProcessor
from aiworker.infrastructure.llm.credentials import credential_status
from aiworker.utils.logging_config import configure_logging

# Load local .env automatically so provider keys are available.
load_dotenv(find_dotenv(usecwd=True), override=False)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aiworker",
        description="aiworker - multi-provider AI request worker",
    )
    parser.add_argument("--version", action="store_true", help="print version and exit")
    parser.add_argument(
        "--log-level",
        choices=["info", "verbose", "debug"],
        default=None,
        help="payload logging detail (default: AIWORKER_LOG_LEVEL or info)",
    )

    subparsers = parser.add_subparsers(dest="command", help="available commands")

    select_parser = subparsers.add_parser("select", help="dry-run provider selection")
    select_parser.add_argument("--type", "-t", default="default", help="request type")
    select_parser.add_argument("--options", default="{}", help="request options as JSON")
    select_parser.add_argument("--metadata", default="{}", help="request metadata as JSON")

    run_parser = subparsers.add_parser("run", help="process one task message")
    run_parser.add_argument(
        "--file",
        "-f",
        help="task message JSON file ({type, requestId, data}); '-' reads stdin",
    )
    run_parser.add_argument("--prompt", "-p", help="build a request from a single user prompt")
    run_parser.add_argument("--type", "-t", default="default", help="request type for --prompt")
    run_parser.add_argument("--system", help="system prompt for --prompt")
    run_parser.add_argument("--options", default="{}", help="request options as JSON for --prompt")
    run_parser.add_argument("--progress", action="store_true", help="print progress messages to stderr")

    subparsers.add_parser("providers", help="list provider credential status")
    return parser


def _json_arg(raw: str, name: str) -> Dict[str, Any]:
    try:
        value = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise ValueError(f"--{name} is not valid JSON: {exc}") from exc
    if not isinstance(value, dict):
        raise ValueError(f"--{name} must be a JSON object")
    return value


def _load_task(parsed: argparse.Namespace) -> Dict[str, Any]:
    if parsed.file:
        if parsed.file == "-":
            return json.load(sys.stdin)
        with open(parsed.file, "r", encoding="utf-8") as fh:
            return json.load(fh)
    if parsed.prompt:
        data: Dict[str, Any] = {
            "type": parsed.type,
            "messages": [{"role": "user", "content": parsed.prompt}],
            "options": _json_arg(parsed.options, "options"),
        }
        if parsed.system:
            data["systemPrompt"] = parsed.system
        return {"type": "request", "requestId": f"cli-{uuid.uuid4().hex[:8]}", "data": data}
    raise ValueError("run needs --file or --prompt")


async def _run_task(message: Dict[str, Any], show_progress: bool) -> Optional[Dict[str, Any]]:
    def on_progress(update: Dict[str, Any]) -> None:
        if show_progress:
            print(json.dumps(update), file=sys.stderr)

    processor = TaskProcessor.from_env(on_progress=on_progress)
    try:
        return await processor.handle_message(message)
    finally:
        await processor.aclose()


def run_cli(args: Optional[list] = None) -> int:
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.version:
        print("aiworker v0.1.0")
        return 0

    if not parsed.command:
        parser.print_help()
        return 0

    configure_logging(parsed.log_level)

    try:
        if parsed.command == "select":
            decision = select_provider(
                parsed.type,
                _json_arg(parsed.options, "options"),
                _json_arg(parsed.metadata, "metadata"),
                dict(os.environ),
            )
            print(json.dumps(decision.to_dict(), indent=2))
            return 0

        if parsed.command == "providers":
            report = {
                "providers": credential_status(),
                "fallback_chain": fallback_chain_from_env(os.environ),
            }
            print(json.dumps(report, indent=2))
            return 0

        if parsed.command == "run":
            response = asyncio.run(_run_task(_load_task(parsed), parsed.progress))
            if response is None:
                print("Message ignored: not a request", file=sys.stderr)
                return 1
            print(json.dumps(response, indent=2, ensure_ascii=False))
            return 0 if response.get("type") == "response" else 1

        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
