from __future__ import annotations

from pathlib import Path
from typing import Callable

import anyio
import typer

from . import __version__
from .config import ConfigError
from .gateway import AuthenticationError, GatewayClient, GatewayConfig, SubscriberOverflow
from .gateway.events import (
    DispatchEvent,
    MessageCreateEvent,
    MessageDeleteEvent,
    MessageUpdateEvent,
    PresenceUpdateEvent,
    ReadyEvent,
    TypingStartEvent,
    UnknownEvent,
)
from .logging import get_logger, setup_logging
from .settings import load_settings, require_token

logger = get_logger(__name__)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def format_event(event: DispatchEvent) -> str:
    match event:
        case MessageCreateEvent():
            return (
                f"MESSAGE_CREATE #{event.channel_id} "
                f"<{event.author.display_name}> {event.content}"
            )
        case MessageUpdateEvent():
            return f"MESSAGE_UPDATE #{event.channel_id} {event.id}"
        case MessageDeleteEvent():
            return f"MESSAGE_DELETE #{event.channel_id} {event.id}"
        case TypingStartEvent():
            return f"TYPING_START #{event.channel_id} {event.user_id}"
        case PresenceUpdateEvent():
            return f"PRESENCE_UPDATE {event.user.id} {event.status}"
        case ReadyEvent():
            return (
                f"READY as {event.user.display_name} "
                f"({len(event.guilds)} guilds)"
            )
        case UnknownEvent():
            return event.name
    return event.event_name


async def tail_events(
    config: GatewayConfig,
    *,
    echo: Callable[[str], None] = typer.echo,
    client_factory: Callable[[GatewayConfig], GatewayClient] = GatewayClient,
) -> None:
    """Print every dispatch event until the gateway client stops."""
    client = client_factory(config)
    subscription = client.subscribe()

    async def consume() -> None:
        try:
            async with subscription:
                async for event in subscription:
                    echo(format_event(event))
        except SubscriberOverflow as exc:
            logger.warning("tail.overflow", capacity=exc.capacity)
            client.stop()

    failure: AuthenticationError | None = None
    async with anyio.create_task_group() as tg:
        tg.start_soon(consume)
        # the subscription ends on its own once the client closes its dispatcher
        try:
            await client.run()
        except AuthenticationError as exc:
            failure = exc
    if failure is not None:
        raise failure


def create_app() -> typer.Typer:
    app = typer.Typer(
        add_completion=False,
        no_args_is_help=True,
        help="Terminal chat client gateway tools.",
    )

    @app.callback()
    def app_main(
        version: bool = typer.Option(
            False,
            "--version",
            help="Show the version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ) -> None:
        """tuicord CLI."""

    @app.command()
    def tail(
        config: Path | None = typer.Option(
            None,
            "--config",
            help="Path to tuicord.toml (defaults to ~/.tuicord/tuicord.toml).",
        ),
        debug: bool = typer.Option(
            False,
            "--debug/--no-debug",
            help="Log gateway frames, heartbeats and state transitions.",
        ),
    ) -> None:
        """Connect to the gateway and print dispatch events."""
        setup_logging(debug=debug)
        try:
            settings, config_path = load_settings(config)
            require_token(settings, config_path)
            gateway_config = settings.gateway.to_gateway_config()
        except ConfigError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=1)
        try:
            anyio.run(tail_events, gateway_config)
        except AuthenticationError as e:
            typer.echo(f"authentication failed: {e}", err=True)
            raise typer.Exit(code=2)
        except KeyboardInterrupt:
            raise typer.Exit(code=130)

    return app


def main() -> None:
    app = create_app()
    app()


if __name__ == "__main__":
    main()
