"""Editor host glue: command registry and extension activation.

The host owns an ExtensionContext; activate() starts the language client
and registers the extension's commands, deactivate() disposes everything
that was pushed onto the context, newest first.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ravenlsp.client import LanguageClient
from ravenlsp.config import Config
from ravenlsp.session import Disposable
from ravenlsp.session.process import Connector

_log = logging.getLogger("ravenlsp.host")

CommandHandler = Callable[..., Any]


class CommandRegistry:
    """Mapping of command name to handler."""

    def __init__(self) -> None:
        self._commands: dict[str, CommandHandler] = {}

    def register(self, name: str, handler: CommandHandler) -> Disposable:
        """Register a command; disposing the result unregisters it.

        Raises:
            ValueError: If the name is already registered.
        """
        if name in self._commands:
            raise ValueError(f"Command already registered: {name}")
        self._commands[name] = handler

        def unregister() -> None:
            if self._commands.get(name) is handler:
                del self._commands[name]

        return Disposable(unregister)

    async def execute(self, name: str, *args: Any) -> Any:
        """Run a command, awaiting it if the handler is async.

        Raises:
            KeyError: If no such command is registered.
        """
        try:
            handler = self._commands[name]
        except KeyError:
            raise KeyError(f"Unknown command: {name}") from None
        result = handler(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def commands(self) -> list[str]:
        return sorted(self._commands)


@dataclass
class ExtensionContext:
    """What the host hands to activate()."""

    commands: CommandRegistry = field(default_factory=CommandRegistry)
    subscriptions: list[Disposable] = field(default_factory=list)
    show_message: Callable[[str], None] = print
    client: LanguageClient | None = None


async def activate(
    context: ExtensionContext,
    config: Config | None = None,
    *,
    connector: Connector | None = None,
) -> LanguageClient:
    """Create and start the language client, register commands."""
    client = LanguageClient(config, connector=connector)
    context.client = client

    def say_hello() -> None:
        context.show_message("Hello from Raven!")

    async def restart_server() -> None:
        context.show_message("Restarting Raven language server")
        await client.restart()

    def show_status() -> str:
        capabilities = client.session.capabilities
        negotiated = sorted(capabilities.negotiated) if capabilities else []
        status = f"Raven language server: {client.state.value}; features: {', '.join(negotiated) or 'none'}"
        context.show_message(status)
        return status

    context.subscriptions.append(context.commands.register("raven.sayHello", say_hello))
    context.subscriptions.append(context.commands.register("raven.restartServer", restart_server))
    context.subscriptions.append(context.commands.register("raven.showStatus", show_status))

    await client.start()
    context.subscriptions.append(Disposable(client.stop))
    _log.info("Raven extension activated")
    return client


async def deactivate(context: ExtensionContext) -> None:
    """Dispose every subscription, newest first."""
    while context.subscriptions:
        disposable = context.subscriptions.pop()
        await disposable.dispose()
    context.client = None
    _log.info("Raven extension deactivated")
