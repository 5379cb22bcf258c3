"""CLI commands for turnstream."""

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from turnstream import __logo__, __version__

app = typer.Typer(
    name="turnstream",
    help=f"{__logo__} turnstream - Streaming chat replies with turn arbitration",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} turnstream v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
):
    """turnstream - Streaming chat replies with turn arbitration."""
    pass


def _configure_logging(level: str, file: str = "", rotation: str = "10 MB") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)
    if file:
        logger.add(Path(file).expanduser(), level=level, rotation=rotation, enqueue=True)


def _mask(secret: str) -> str:
    if not secret:
        return "[dim]not set[/dim]"
    return f"{secret[:4]}…" if len(secret) > 8 else "****"


# ============================================================================
# Init
# ============================================================================


@app.command()
def init(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
    token: str = typer.Option(None, "--token", help="Discord bot token"),
    guild: str = typer.Option(None, "--guild", help="Restrict the bot to this guild id"),
    allow_from: str = typer.Option(None, "--allow-from", help="Comma-separated user ids, * for everyone"),
    model: str = typer.Option(None, "--model", help="LiteLLM model name"),
    api_key: str = typer.Option(None, "--api-key", help="Provider API key"),
):
    """Create the config file, or update it with the given options."""
    from turnstream.config.loader import get_config_path, load_config, save_config
    from turnstream.config.schema import DiscordConfig

    path = config_path or get_config_path()
    existed = path.exists()
    config = load_config(path)

    discord_config = config.channels.discord
    if token is not None:
        discord_config.token = token
        discord_config.enabled = bool(token)
    if guild is not None:
        discord_config.guild_id = guild
    if allow_from is not None:
        discord_config.allow_from = DiscordConfig(allow_from=allow_from).allow_from
    if model is not None:
        config.agent.model = model
    if api_key is not None:
        config.provider.api_key = api_key

    save_config(config, path)
    console.print(f"[green]✓[/green] {'Updated' if existed else 'Created'} config at {path}")
    if not discord_config.token:
        console.print("Next: add a bot token with [cyan]turnstream init --token ...[/cyan]")


# ============================================================================
# Run
# ============================================================================


@app.command()
def run(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Connect to Discord and start answering."""
    from turnstream.agent.executor import ExecutionGuard
    from turnstream.arbitration.arbiter import TurnArbiter
    from turnstream.arbitration.queue import ChannelQueueRegistry
    from turnstream.arbitration.ticker import TurnTicker
    from turnstream.channels.discord import DiscordChannel
    from turnstream.config.loader import load_config
    from turnstream.delivery.registry import StreamRegistry
    from turnstream.providers.litellm_provider import LiteLLMInjector

    config = load_config(config_path)
    _configure_logging(
        "DEBUG" if verbose else config.logging.level,
        config.logging.file,
        config.logging.rotation,
    )

    discord_config = config.channels.discord
    if not discord_config.enabled or not discord_config.token:
        console.print("[red]Discord channel is not enabled or has no token.[/red]")
        raise typer.Exit(1)

    console.print(f"{__logo__} Starting turnstream with model {config.agent.model}...")

    injector = LiteLLMInjector(
        api_key=config.provider.api_key or None,
        api_base=config.provider.api_base,
        model=config.agent.model,
        system_prompt=config.agent.system_prompt,
        max_tokens=config.agent.max_tokens,
        temperature=config.agent.temperature,
        history_limit=config.agent.history_limit,
        extra_headers=config.provider.extra_headers,
    )
    queues = ChannelQueueRegistry()
    streams = StreamRegistry()
    guard = ExecutionGuard(
        injector,
        queues,
        streams,
        ack_emoji=discord_config.reactions.ack,
        done_emoji=discord_config.reactions.done,
        error_emoji=discord_config.reactions.error,
        error_reply=discord_config.error_reply,
    )
    arbiter = TurnArbiter(queues, guard)
    ticker = TurnTicker(arbiter)
    channel = DiscordChannel(discord_config, arbiter)

    async def run_all():
        await ticker.start()
        try:
            await channel.start()
        finally:
            ticker.stop()
            await arbiter.shutdown()
            await streams.close()
            await channel.stop()

    try:
        asyncio.run(run_all())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


# ============================================================================
# Status
# ============================================================================


@app.command()
def status(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """Show effective configuration and delivery constants."""
    from turnstream.arbitration.arbiter import AGENT_COOLDOWN_S, TYPING_WINDOW_S
    from turnstream.arbitration.queue import BUFFER_SIZE
    from turnstream.arbitration.ticker import DEFAULT_TICK_INTERVAL_S
    from turnstream.config.loader import get_config_path, load_config
    from turnstream.delivery.stream import DEBOUNCE_S, DRAIN_TIMEOUT_S, IDLE_SPLIT_S
    from turnstream.delivery.unit import EDIT_THRESHOLD, MESSAGE_LIMIT

    path = config_path or get_config_path()
    config = load_config(path)
    discord_config = config.channels.discord

    console.print(f"{__logo__} turnstream Status\n")
    console.print(f"Config: {path} {'[green]✓[/green]' if path.exists() else '[red]✗[/red]'}")

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Discord", "[green]enabled[/green]" if discord_config.enabled else "[dim]disabled[/dim]")
    table.add_row("Discord token", _mask(discord_config.token))
    table.add_row("Guild", discord_config.guild_id or "[dim]any[/dim]")
    table.add_row("Allow from", ", ".join(discord_config.allow_from) or "[dim]nobody[/dim]")
    table.add_row("Model", config.agent.model)
    table.add_row("API key", _mask(config.provider.api_key))
    table.add_row("API base", config.provider.api_base or "[dim]default[/dim]")
    console.print(table)

    limits = Table(title="Delivery and turn limits")
    limits.add_column("Constant", style="cyan")
    limits.add_column("Value", justify="right")
    limits.add_row("Message length limit", str(MESSAGE_LIMIT))
    limits.add_row("Edit threshold (chars)", str(EDIT_THRESHOLD))
    limits.add_row("Idle split (s)", str(IDLE_SPLIT_S))
    limits.add_row("Debounce (s)", str(DEBOUNCE_S))
    limits.add_row("Finalize drain timeout (s)", str(DRAIN_TIMEOUT_S))
    limits.add_row("Agent cooldown (s)", str(AGENT_COOLDOWN_S))
    limits.add_row("Typing window (s)", str(TYPING_WINDOW_S))
    limits.add_row("Recent buffer size", str(BUFFER_SIZE))
    limits.add_row("Ticker interval (s)", str(DEFAULT_TICK_INTERVAL_S))
    console.print(limits)


if __name__ == "__main__":
    app()
