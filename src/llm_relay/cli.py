"""
Command-line interface for llm-relay.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import mimetypes
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.table import Table

from llm_relay.config import ProviderSettings
from llm_relay.errors import LanguageModelError
from llm_relay.execution import read_all
from llm_relay.logging import setup_logging
from llm_relay.messages import (
    ChatMessage,
    ChatRequest,
    FunctionInvocation,
    FunctionReturnValue,
    ImageMessage,
    Message,
    ResponseFormat,
)
from llm_relay.registry import ModelRegistry, default_registry

console = Console()


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Provider-agnostic LLM chat CLI",
        prog="llm-relay",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug logging, HTTP requests)",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="YAML settings file (defaults to environment variables)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Models command
    models_parser = subparsers.add_parser("models", help="List available models")
    models_parser.add_argument(
        "--all",
        action="store_true",
        help="Include models of vendors without credentials",
    )
    models_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )

    # Chat command
    chat_parser = subparsers.add_parser("chat", help="Send a prompt and stream the reply")
    chat_parser.add_argument("model", help="Model name")
    chat_parser.add_argument("prompt", nargs="+", help="Prompt text")
    chat_parser.add_argument("-s", "--system", help="System prompt")
    chat_parser.add_argument(
        "-t",
        "--temperature",
        type=float,
        default=0.0,
        help="Sampling temperature",
    )
    chat_parser.add_argument("--max-tokens", type=int, help="Maximum tokens to generate")
    chat_parser.add_argument(
        "--json",
        action="store_true",
        help="Ask the model to answer with a JSON object",
    )
    chat_parser.add_argument(
        "-i",
        "--image",
        action="append",
        dest="images",
        help="Image file to send along with the prompt",
    )

    # Config command with subcommands
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")

    config_subparsers.add_parser("show", help="Show current settings (secrets masked)")

    config_init_parser = config_subparsers.add_parser("init", help="Initialize a settings file")
    config_init_parser.add_argument(
        "-o",
        "--output",
        default="llm-relay.yaml",
        help="Output file path",
    )

    args = parser.parse_args()

    if getattr(args, "verbose", False):
        setup_logging("DEBUG", sdk_level="INFO")
    else:
        setup_logging("WARNING")

    if args.command == "models":
        cmd_models(args)
    elif args.command == "chat":
        sys.exit(asyncio.run(cmd_chat(args)))
    elif args.command == "config":
        cmd_config(args)
    else:
        parser.print_help()


def _load_settings(path: str | None) -> ProviderSettings:
    if path:
        return ProviderSettings.from_yaml(Path(path))
    return ProviderSettings.from_env()


def _create_registry(args: argparse.Namespace, include_unconfigured: bool = False) -> ModelRegistry:
    settings = _load_settings(getattr(args, "config", None))
    return default_registry(settings, include_unconfigured=include_unconfigured)


def cmd_models(args: argparse.Namespace) -> None:
    """List registered models."""
    registry = _create_registry(args, include_unconfigured=args.all)
    infos = [registry.get_info(name) for name in registry.list_models()]

    if args.json:
        console.print_json(json.dumps(infos, indent=2))
        return

    table = Table(title="Available Models")
    table.add_column("Name", style="cyan")
    table.add_column("Vendor")
    table.add_column("Default", style="dim")

    for info in infos:
        table.add_row(info["name"], info["vendor"], "yes" if info["is_default"] else "")

    console.print(table)
    console.print(f"\n[dim]Total: {len(infos)} models[/dim]")


def build_request(args: argparse.Namespace) -> ChatRequest:
    """Create the chat request described by the chat command's arguments."""
    messages: list[Message] = []
    for image in args.images or []:
        path = Path(image)
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        data = base64.b64encode(path.read_bytes()).decode("ascii")
        messages.append(ImageMessage("user", mime_type, data))
    messages.append(ChatMessage("user", " ".join(args.prompt)))

    return ChatRequest(
        messages=tuple(messages),
        system_prompt=args.system,
        temperature=args.temperature,
        max_tokens=args.max_tokens,
        response_format=ResponseFormat.JSON if args.json else None,
    )


async def cmd_chat(args: argparse.Namespace) -> int:
    """Stream a reply to stdout. Returns the process exit code."""
    registry = _create_registry(args)

    try:
        model = registry.get(args.model)
    except (KeyError, LanguageModelError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1

    request = build_request(args)
    if any(isinstance(m, ImageMessage) for m in request.messages) and not model.supports_image_inputs:
        console.print(f"[red]Error:[/red] {model.identifier} does not accept images")
        return 1

    async def print_fragments() -> None:
        async for fragment in execution.read_text_fragments():
            console.print(fragment, end="", markup=False, highlight=False)

    try:
        async with model.execute(request) as execution:
            _, messages = await asyncio.gather(
                print_fragments(),
                read_all(execution.read_complete_messages()),
            )
    except LanguageModelError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        return 1

    console.print()
    for message in messages:
        if isinstance(message, FunctionInvocation):
            console.print(f"[dim]-> {message.name}({json.dumps(message.parameters)})[/dim]")
        elif isinstance(message, FunctionReturnValue):
            status = "ok" if message.successful else "failed"
            console.print(f"[dim]<- {message.id} {status}: {message.result}[/dim]")

    return 0


def cmd_config(args: argparse.Namespace) -> None:
    """Configuration management commands."""
    if args.config_command == "show":
        settings = _load_settings(getattr(args, "config", None))
        console.print_json(json.dumps(settings.to_dict(), indent=2))

    elif args.config_command == "init":
        output_path = Path(args.output)
        if output_path.exists():
            console.print(f"[red]File already exists:[/red] {output_path}")
            sys.exit(1)

        output_path.write_text(
            yaml.safe_dump(ProviderSettings().to_dict(redact=False), sort_keys=False)
        )
        console.print(f"[green]Created settings file:[/green] {output_path}")

    else:
        console.print("[dim]Usage: llm-relay config {show|init}[/dim]")


if __name__ == "__main__":
    main()
