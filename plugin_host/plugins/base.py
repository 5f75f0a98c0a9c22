"""
Data model and plugin-module contract.

A plugin is a single `.py` file in the plugins directory exposing:

    async def handle(event, transport, config): ...   # required

    info = {                                          # optional
        "name": "Economy",
        "version": "1.2.0",
        "author": "Bot Team",
        "description": "Wallets and daily rewards",
        "category": "games",
        "commands": [{"name": "balance", "aliases": ["bal"]}],
        "command_handlers": {"balance": show_balance},
        "scheduled_tasks": [
            {"name": "payout", "schedule": "0 8 * * *", "handler": payout},
        ],
        "button_handlers": {"claim_daily": claim},
        "init": setup,      # called with a PluginContext after import
        "cleanup": teardown,
    }

Handlers may be plain functions or coroutines. Plain functions are run in
a worker thread so they cannot stall the event loop.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..utils.invoke import Handler, read_field

if TYPE_CHECKING:
    from ..core.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "1.0.0"
DEFAULT_AUTHOR = "Unknown"
DEFAULT_DESCRIPTION = "No description"
DEFAULT_CATEGORY = "general"


def declared_list(
    value: Any, plugin_name: str, field_name: str, allow_string: bool = False
) -> List[Any]:
    """Normalize a declared `info` list field.

    With allow_string, a bare string counts as a single entry. Mappings,
    other strings and non-iterables are rejected with a warning and read
    as empty.
    """
    if value is None:
        return []
    if allow_string and isinstance(value, str):
        return [value]
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        logger.warning(
            f"Plugin {plugin_name} {field_name} must be a list, got {type(value).__name__}"
        )
        return []
    return list(value)


@dataclass
class CommandSpec:
    """A command a plugin answers to, with optional aliases."""

    name: str
    aliases: List[str] = field(default_factory=list)
    description: str = ""

    def matches(self, command: str) -> bool:
        return command == self.name or command in self.aliases

    @classmethod
    def parse(cls, raw: Any) -> Optional["CommandSpec"]:
        """Build from a bare string or a {name, aliases, description} mapping."""
        if isinstance(raw, str):
            return cls(name=raw) if raw else None
        name = read_field(raw, "name")
        if not name:
            return None
        aliases = read_field(raw, "aliases", default=[]) or []
        if isinstance(aliases, str):
            aliases = [aliases]
        return cls(
            name=str(name),
            aliases=[str(a) for a in aliases],
            description=str(read_field(raw, "description", default="")),
        )


@dataclass
class PluginMetadata:
    """
    Declared plugin metadata.

    Attributes:
        name: Display name (defaults to the file stem)
        version: Version string
        author: Plugin author name
        description: Human-readable description
        category: Free-form grouping used by menus
        commands: Commands the plugin answers to
        scheduled_tasks: Declared task descriptors as name/schedule/description
    """

    name: str
    version: str = DEFAULT_VERSION
    author: str = DEFAULT_AUTHOR
    description: str = DEFAULT_DESCRIPTION
    category: str = DEFAULT_CATEGORY
    commands: List[CommandSpec] = field(default_factory=list)
    scheduled_tasks: List[Dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_info(cls, info: Any, fallback_name: str) -> "PluginMetadata":
        """Extract metadata from a plugin's `info` object, applying defaults."""
        commands = []
        raw_aliases = declared_list(
            read_field(info, "aliases"), fallback_name, "aliases", allow_string=True
        )
        raw_commands = declared_list(
            read_field(info, "commands"), fallback_name, "commands", allow_string=True
        )
        for raw in raw_commands:
            spec = CommandSpec.parse(raw)
            if spec is not None:
                commands.append(spec)
        # Plugin-level aliases apply to a single bare command
        if raw_aliases and len(commands) == 1 and not commands[0].aliases:
            commands[0].aliases = [str(a) for a in raw_aliases]

        tasks = []
        raw_tasks = read_field(info, "scheduled_tasks", "scheduledTasks")
        for raw in declared_list(raw_tasks, fallback_name, "scheduled_tasks"):
            task_name = read_field(raw, "name")
            if not task_name:
                continue
            tasks.append(
                {
                    "name": str(task_name),
                    "schedule": str(read_field(raw, "schedule", default="")),
                    "description": str(read_field(raw, "description", default="")),
                }
            )

        return cls(
            name=str(read_field(info, "name", default=fallback_name)),
            version=str(read_field(info, "version", default=DEFAULT_VERSION)),
            author=str(read_field(info, "author", default=DEFAULT_AUTHOR)),
            description=str(
                read_field(info, "description", default=DEFAULT_DESCRIPTION)
            ),
            category=str(read_field(info, "category", default=DEFAULT_CATEGORY)),
            commands=commands,
            scheduled_tasks=tasks,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "author": self.author,
            "description": self.description,
            "category": self.category,
            "commands": [
                {"name": c.name, "aliases": c.aliases, "description": c.description}
                for c in self.commands
            ],
            "scheduled_tasks": list(self.scheduled_tasks),
        }


@dataclass
class PluginRecord:
    """One loaded plugin, keyed in the registry by `name` (the file stem)."""

    name: str
    path: Path
    metadata: PluginMetadata
    handler: Handler
    loaded_at: datetime
    module_name: str
    command_handlers: Dict[str, Handler] = field(default_factory=dict)
    button_handlers: Dict[str, Handler] = field(default_factory=dict)
    cleanup: Optional[Handler] = None
    enabled: bool = True
    has_scheduled_tasks: bool = False
    module: Optional[ModuleType] = field(default=None, repr=False)

    def answers_to(self, command: str) -> bool:
        if command in self.command_handlers:
            return True
        return any(spec.matches(command) for spec in self.metadata.commands)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "file": self.path.name,
            "enabled": self.enabled,
            "loaded_at": self.loaded_at.isoformat(),
            "has_scheduled_tasks": self.has_scheduled_tasks,
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class PluginContext:
    """Passed to a plugin's `init` hook."""

    name: str
    plugins_dir: Path
    settings: Optional["Settings"] = None
    logger: Any = None

