"""CLI entry point for keepkey-ollama.

Thin terminal front end over the Ollama client, mostly for poking at a
server by hand.

Entry point:
    keepkey-ollama [--host HOST] list|ps
    keepkey-ollama show|pull|push|rm MODEL
    keepkey-ollama cp SOURCE DESTINATION
    keepkey-ollama create NAME -f Modelfile
    keepkey-ollama run MODEL PROMPT
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

import httpx

from keepkey_ollama.client import Ollama
from keepkey_ollama.errors import OllamaError

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# ARGUMENT PARSING
# ─────────────────────────────────────────────────────────────────────


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keepkey-ollama",
        description="Talk to an Ollama server.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--host", default=None, help="Server address (default: $OLLAMA_HOST or 127.0.0.1:11434)"
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("list", help="List local models")
    sub.add_parser("ps", help="List running models")

    for name, help_text in (
        ("show", "Show model information"),
        ("pull", "Pull a model from a registry"),
        ("push", "Push a model to a registry"),
        ("rm", "Remove a model"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("model")
        if name in ("pull", "push"):
            p.add_argument("--insecure", action="store_true", help="Allow insecure registries")

    cp_p = sub.add_parser("cp", help="Copy a model")
    cp_p.add_argument("source")
    cp_p.add_argument("destination")

    create_p = sub.add_parser("create", help="Create a model from a Modelfile")
    create_p.add_argument("model")
    create_p.add_argument("-f", "--file", required=True, help="Path to the Modelfile")
    create_p.add_argument("-q", "--quantize", default=None, help="Quantization level")

    run_p = sub.add_parser("run", help="Generate a completion")
    run_p.add_argument("model")
    run_p.add_argument("prompt")

    return parser


# ─────────────────────────────────────────────────────────────────────
# COMMANDS
# ─────────────────────────────────────────────────────────────────────


async def _print_progress(stream) -> None:
    """Print one status line per progress update, collapsing repeats."""
    last_status: Optional[str] = None
    async for update in stream:
        status = update.get("status", "")
        total = update.get("total")
        completed = update.get("completed")
        if total and completed is not None:
            print(f"{status} {completed * 100 // total}%")
        elif status != last_status:
            print(status)
        last_status = status


async def _run(args: argparse.Namespace) -> int:
    """Execute one command. Returns exit code."""
    async with Ollama.from_env(host=args.host) as client:
        if args.command == "list":
            for model in (await client.list()).get("models", []):
                print(model.get("name"))
        elif args.command == "ps":
            for model in (await client.ps()).get("models", []):
                print(model.get("name"))
        elif args.command == "show":
            json.dump(await client.show(args.model), sys.stdout, indent=2)
            sys.stdout.write("\n")
        elif args.command == "pull":
            await _print_progress(await client.pull(args.model, insecure=args.insecure, stream=True))
        elif args.command == "push":
            await _print_progress(await client.push(args.model, insecure=args.insecure, stream=True))
        elif args.command == "rm":
            await client.delete(args.model)
            print(f"deleted '{args.model}'")
        elif args.command == "cp":
            await client.copy(args.source, args.destination)
            print(f"copied '{args.source}' to '{args.destination}'")
        elif args.command == "create":
            stream = await client.create(
                args.model, path=args.file, quantize=args.quantize, stream=True
            )
            await _print_progress(stream)
        elif args.command == "run":
            stream = await client.generate(args.model, args.prompt, stream=True)
            async for part in stream:
                sys.stdout.write(part.get("response", ""))
                sys.stdout.flush()
            sys.stdout.write("\n")
    return 0


# ─────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────────────────────────────


def main(argv: Optional[list[str]] = None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s %(message)s", stream=sys.stderr)

    # Load env
    from dotenv import load_dotenv
    load_dotenv()

    try:
        code = asyncio.run(_run(args))
    except (OllamaError, httpx.HTTPError, ValueError) as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    except KeyboardInterrupt:
        code = 130

    sys.exit(code)


if __name__ == "__main__":
    main()
