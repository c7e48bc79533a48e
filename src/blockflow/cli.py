"""
Command-line interface for blockflow.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.table import Table

from blockflow.adapters.registry import AdapterRegistry
from blockflow.config import BlockflowConfig
from blockflow.errors import ChatError, ConfigurationError
from blockflow.invocation import ChatInvocation, ChatMessage
from blockflow.logging import setup_logging
from blockflow.model_registry import ModelRegistry
from blockflow.proxy import ProviderProxy
from blockflow.vault import CredentialVault

console = Console()

DEFAULT_CONFIG_FILE = "blockflow.yaml"


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Blockflow canvas backend",
        prog="blockflow",
    )

    # Global options
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug logging)",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="YAML config file (default: environment)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port")

    # keygen
    subparsers.add_parser("keygen", help="Generate a vault encryption key")

    # encrypt
    encrypt_parser = subparsers.add_parser("encrypt", help="Encrypt a provider API key read from stdin")
    encrypt_parser.add_argument("provider", help="Provider name")

    # providers
    providers_parser = subparsers.add_parser("providers", help="List supported providers")
    providers_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # models
    models_parser = subparsers.add_parser("models", help="List catalog models")
    models_parser.add_argument("-p", "--provider", help="Only models of this provider")
    models_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # ask
    ask_parser = subparsers.add_parser("ask", help="Send one prompt through the proxy")
    ask_parser.add_argument("model", help="Catalog model id")
    ask_parser.add_argument("prompt", help="User message")
    ask_parser.add_argument("-s", "--system", help="System prompt")
    ask_parser.add_argument(
        "-k",
        "--key-env",
        default="BLOCKFLOW_API_KEY",
        help="Environment variable holding the provider API key",
    )

    # config
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_init_parser = config_subparsers.add_parser("init", help="Initialize a new config file")
    config_init_parser.add_argument(
        "-o",
        "--output",
        default=DEFAULT_CONFIG_FILE,
        help="Output file path",
    )

    args = parser.parse_args(argv)

    # Setup logging based on verbosity
    if getattr(args, "verbose", False):
        setup_logging("DEBUG")
    else:
        setup_logging("WARNING")

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "keygen":
        cmd_keygen(args)
    elif args.command == "encrypt":
        cmd_encrypt(args)
    elif args.command == "providers":
        cmd_providers(args)
    elif args.command == "models":
        cmd_models(args)
    elif args.command == "ask":
        sys.exit(asyncio.run(cmd_ask(args)))
    elif args.command == "config":
        cmd_config(args)
    else:
        parser.print_help()


def _load_config(path: str | None) -> BlockflowConfig:
    config = BlockflowConfig.from_yaml(Path(path)) if path else BlockflowConfig.from_env()
    if path:
        env = BlockflowConfig.from_env()
        config.encryption_key = config.encryption_key or env.encryption_key
        config.webhook_secret = config.webhook_secret or env.webhook_secret
    return config


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the HTTP API with uvicorn."""
    from blockflow.web.server import run_server

    config = _load_config(args.config)
    setup_logging("DEBUG" if args.verbose else config.log_level)
    console.print(f"[bold]blockflow[/bold] listening on http://{args.host}:{args.port}")
    run_server(config=config, host=args.host, port=args.port)


def cmd_keygen(args: argparse.Namespace) -> None:
    """Print a fresh vault key."""
    console.print(CredentialVault.generate_key(), highlight=False)
    console.print("[dim]Set it as BLOCKFLOW_ENCRYPTION_KEY[/dim]")


def cmd_encrypt(args: argparse.Namespace) -> None:
    """Encrypt an API key read from stdin."""
    config = _load_config(args.config)
    try:
        vault = CredentialVault.from_config(config)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    api_key = sys.stdin.readline().strip()
    if not api_key:
        console.print("[red]No API key on stdin[/red]")
        sys.exit(1)

    credential = vault.seal("cli", args.provider, api_key)
    console.print_json(
        json.dumps(
            {
                "provider": credential.provider,
                "encrypted_key": credential.encrypted_key,
                "key_hint": credential.key_hint,
            }
        )
    )


def cmd_providers(args: argparse.Namespace) -> None:
    """List supported providers."""
    registry = AdapterRegistry.default(_load_config(args.config))
    infos = [registry.get_info(name) for name in registry.list_providers()]

    if args.json:
        console.print_json(json.dumps(infos, indent=2))
        return

    table = Table(title="Providers")
    table.add_column("Name", style="cyan")
    table.add_column("Display name")
    table.add_column("Family", style="dim")

    for info in infos:
        table.add_row(info["name"], info["display_name"], info["family"] or "")

    console.print(table)
    console.print(f"\n[dim]Total: {len(infos)} providers[/dim]")


def cmd_models(args: argparse.Namespace) -> None:
    """List catalog models."""
    registry = ModelRegistry()
    registry.load_defaults()
    models = registry.list_by_provider(args.provider) if args.provider else registry.all()

    if args.json:
        data = [
            {
                "id": m.id,
                "provider": m.provider,
                "name": m.display_name,
                "api_model_id": m.api_model_id,
                "context_window": m.context_window,
                "cost": {"input": m.cost.input, "output": m.cost.output},
            }
            for m in models
        ]
        console.print_json(json.dumps(data, indent=2))
        return

    table = Table(title="Models")
    table.add_column("ID", style="cyan")
    table.add_column("Provider")
    table.add_column("Context", justify="right")
    table.add_column("$/M in", justify="right", style="dim")
    table.add_column("$/M out", justify="right", style="dim")

    for m in models:
        table.add_row(
            m.id,
            m.provider,
            f"{m.context_window:,}",
            f"{m.cost.input:.2f}",
            f"{m.cost.output:.2f}",
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(models)} models[/dim]")


async def cmd_ask(args: argparse.Namespace) -> int:
    """Stream one prompt to a model. Returns the exit code."""
    config = _load_config(args.config)
    models = ModelRegistry()
    models.load_defaults()

    try:
        provider = models.resolve_provider(args.model)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        return 1

    messages = []
    if args.system:
        messages.append(ChatMessage(role="system", content=args.system))
    messages.append(ChatMessage(role="user", content=args.prompt))

    invocation = ChatInvocation(
        provider=provider,
        model=models.api_model_id(args.model),
        messages=messages,
        credential=os.environ.get(args.key_env),
    )

    async with ProviderProxy(config=config, models=models) as proxy:
        async for item in proxy.dispatch(invocation):
            if isinstance(item, ChatError):
                console.print(f"\n[red]{item.kind.value}: {item.message}[/red]")
                return 1
            if item.is_final:
                if item.usage is not None:
                    cost = models.calculate_cost(args.model, item.usage).total
                    console.print(
                        f"\n[dim]{item.usage.total_tokens} tokens, ${cost:.6f}[/dim]"
                    )
            else:
                console.print(item.delta, end="", highlight=False, markup=False)
    console.print()
    return 0


def cmd_config(args: argparse.Namespace) -> None:
    """Configuration management commands."""
    if args.config_command == "show":
        _config_show(args.config)
    elif args.config_command == "init":
        _config_init(args.output)
    else:
        console.print("[yellow]Usage: blockflow config <show|init>[/yellow]")


def _config_show(path: str | None) -> None:
    """Show current configuration."""
    if path is None and Path(DEFAULT_CONFIG_FILE).exists():
        path = DEFAULT_CONFIG_FILE

    try:
        config = _load_config(path)
    except (OSError, yaml.YAMLError) as e:
        console.print(f"[red]Failed to load {path}: {e}[/red]")
        sys.exit(1)

    console.print(f"[dim]Loaded from: {path or 'environment'}[/dim]\n")
    console.print("[bold]Current Configuration:[/bold]\n")
    console.print(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False))
    console.print(f"encryption_key: {'[green]set[/green]' if config.encryption_key else '[yellow]not set[/yellow]'}")
    console.print(f"webhook_secret: {'[green]set[/green]' if config.webhook_secret else '[yellow]not set[/yellow]'}")


def _config_init(output: str) -> None:
    """Initialize a new config file."""
    output_path = Path(output)

    if output_path.exists():
        console.print(f"[red]File already exists: {output_path}[/red]")
        sys.exit(1)

    with open(output_path, "w") as f:
        yaml.dump(BlockflowConfig().to_dict(), f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]Created config file: {output_path}[/green]")
    console.print("[dim]Secrets go in the environment: BLOCKFLOW_ENCRYPTION_KEY, BLOCKFLOW_WEBHOOK_SECRET[/dim]")


if __name__ == "__main__":
    main()
