"""Liveness check: answers `!ping` (or `!p`) with `pong`."""

PREFIX = "!"


async def ping(event, transport, config):
    if transport is not None:
        await transport.reply(event, "pong")


info = {
    "name": "Ping",
    "version": "1.0.0",
    "author": "Bot Team",
    "description": "Liveness check command",
    "category": "utility",
    "commands": [{"name": "ping", "aliases": ["p"], "description": "Reply with pong"}],
    "command_handlers": {"ping": ping},
}


async def handle(event, transport, config):
    text = str(event.get("text", "")) if isinstance(event, dict) else ""
    if not text.startswith(PREFIX):
        return
    command = text[len(PREFIX):].split(maxsplit=1)[0].lower() if len(text) > 1 else ""
    if command in ("ping", "p"):
        await ping(event, transport, config)
