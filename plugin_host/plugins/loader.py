"""
Plugin Loader for discovering, importing and unloading plugin files.

Every load compiles the file source afresh into a new module object whose
`sys.modules` key carries a load counter and a random nonce, so repeated
reloads always see the current file contents. Bytecode caches are never
read or written for plugin files.
"""

import asyncio
import importlib.machinery
import importlib.util
import itertools
import logging
import shutil
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from ..domain.errors import FailureKind, LoadFailure
from ..utils.invoke import Handler, call_handler, read_field, summarize_error
from ..utils.logging import get_event_logger, log_plugin_event
from .base import PluginContext, PluginMetadata, PluginRecord

if TYPE_CHECKING:
    from ..core.config import Settings
    from ..scheduling.clock import Clock
    from ..scheduling.supervisor import TaskSupervisor
    from .dispatcher import MessageDispatcher
    from .metrics import MetricsStore
    from .registry import PluginRegistry

logger = logging.getLogger(__name__)

PLUGIN_SUFFIX = ".py"
HANDLER_ATTR = "handle"
INFO_ATTR = "info"


@dataclass
class LoadSummary:
    """Outcome of one batch load."""

    loaded: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def total(self) -> int:
        return len(self.loaded) + len(self.skipped) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loaded": list(self.loaded),
            "skipped": [{"file": f, "reason": r} for f, r in self.skipped],
            "failed": [{"file": f, "reason": r} for f, r in self.failed],
            "duration_ms": round(self.duration_ms),
        }


class FreshSourceLoader(importlib.machinery.SourceFileLoader):
    """Source loader that compiles already-read bytes and skips __pycache__."""

    def __init__(self, fullname: str, path: str, source: bytes) -> None:
        super().__init__(fullname, path)
        self._source = source

    def get_code(self, fullname: str):
        return self.source_to_code(self._source, self.path)


def is_plugin_file(path: Path) -> bool:
    return (
        path.is_file()
        and path.suffix == PLUGIN_SUFFIX
        and not path.name.startswith((".", "_"))
    )


def _callable_map(raw: Any, plugin_name: str, kind: str) -> Dict[str, Handler]:
    if not raw:
        return {}
    if not isinstance(raw, Mapping):
        logger.warning(f"Plugin {plugin_name} {kind} must be a mapping, ignoring")
        return {}
    handlers = {}
    for key, handler in raw.items():
        if callable(handler):
            handlers[str(key)] = handler
        else:
            logger.warning(f"Plugin {plugin_name} {kind} entry {key!r} is not callable")
    return handlers


class PluginLoader:
    """
    Discovers plugin files and moves them in and out of the registry.

    Batch and single-plugin operations are serialized by one asyncio lock;
    plugin code (import, init, cleanup) runs outside the registry lock.
    """

    def __init__(
        self,
        settings: "Settings",
        registry: "PluginRegistry",
        metrics: "MetricsStore",
        supervisor: "TaskSupervisor",
        dispatcher: "MessageDispatcher",
        clock: "Clock",
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._metrics = metrics
        self._supervisor = supervisor
        self._dispatcher = dispatcher
        self._clock = clock
        self._lock = asyncio.Lock()
        self._counter = itertools.count(1)
        self._has_loaded = False
        self.last_summary: Optional[LoadSummary] = None

    @property
    def plugins_dir(self) -> Path:
        return Path(self._settings.plugins_dir)

    @property
    def disabled_dir(self) -> Path:
        return self._settings.disabled_dir

    @property
    def has_loaded(self) -> bool:
        """True once a batch load has completed."""
        return self._has_loaded

    def plugin_path(self, name: str) -> Path:
        return self.plugins_dir / f"{name}{PLUGIN_SUFFIX}"

    # === Discovery ===

    async def discover(self) -> List[Path]:
        """List plugin files in the plugins directory, sorted by name."""
        return await asyncio.to_thread(self._scan)

    def _scan(self) -> List[Path]:
        plugins_dir = self.plugins_dir
        if not plugins_dir.is_dir():
            logger.warning(f"Plugins directory does not exist: {plugins_dir}")
            return []
        return sorted(p for p in plugins_dir.iterdir() if is_plugin_file(p))

    # === Batch loading ===

    async def load_all(self, force: bool = False) -> List[PluginRecord]:
        """
        Load every plugin file.

        With force=False, a second call returns the current registry
        contents without touching the disk. With force=True, all tasks are
        cancelled, every plugin is unloaded and metrics are cleared first.

        Returns:
            Records of the loaded plugins
        """
        async with self._lock:
            if not force and (self._has_loaded or len(self._registry) > 0):
                return self._registry.list()

            if force:
                await self._unload_everything()

            summary = await self._load_batch()
            self.last_summary = summary
            self._has_loaded = True
            return self._registry.list()

    async def _load_batch(self) -> LoadSummary:
        started = time.perf_counter()
        summary = LoadSummary()

        for path in await self.discover():
            try:
                record = await self._load_path(path)
            except LoadFailure as e:
                summary.failed.append((path.name, e.reason))
                logger.error(str(e))
                continue
            if record is None:
                summary.skipped.append((path.name, f"no {HANDLER_ATTR}() handler"))
            else:
                summary.loaded.append(record.name)

        summary.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Loaded {len(summary.loaded)}/{summary.total} plugins "
            f"in {summary.duration_ms:.0f}ms"
        )
        if summary.skipped or summary.failed:
            logger.info(
                f"Plugin load summary: {len(summary.loaded)} loaded, "
                f"{len(summary.skipped)} skipped, {len(summary.failed)} failed: "
                + ", ".join(f"{f} ({r})" for f, r in summary.skipped + summary.failed)
            )
        return summary

    async def _unload_everything(self) -> None:
        self._supervisor.cancel_all()
        for name in self._registry.names():
            await self._unload(name)
        self._metrics.clear()

    # === Single-file loading ===

    async def load_file(self, path: Path) -> Optional[PluginRecord]:
        """
        Load one plugin file.

        Returns:
            The new record, or None if the file failed or has no handler
        """
        async with self._lock:
            return await self._load_or_log(path)

    async def _load_or_log(self, path: Path) -> Optional[PluginRecord]:
        try:
            return await self._load_path(path)
        except LoadFailure as e:
            logger.error(str(e))
            return None

    async def _load_path(self, path: Path) -> Optional[PluginRecord]:
        name = path.stem
        if name in self._registry:
            raise LoadFailure(path.name, "a plugin with this name is already loaded")

        module = await self._import(path)
        handler = getattr(module, HANDLER_ATTR, None)
        if not callable(handler):
            sys.modules.pop(module.__name__, None)
            logger.warning(f"Skipping {path.name}: no {HANDLER_ATTR}() handler")
            return None

        try:
            info = getattr(module, INFO_ATTR, None)
            metadata = PluginMetadata.from_info(info, name)
            commands = _callable_map(
                read_field(info, "command_handlers", "commandHandlers"), name, "commands"
            )
            buttons = _callable_map(
                read_field(info, "button_handlers", "buttonHandlers"), name, "buttons"
            )
            # Aliases resolve to the handler registered for their command
            for spec in metadata.commands:
                if spec.name in commands:
                    for alias in spec.aliases:
                        commands.setdefault(alias, commands[spec.name])
            tasks = read_field(info, "scheduled_tasks", "scheduledTasks")

            init = read_field(info, "init")
            if callable(init):
                context = PluginContext(
                    name=name,
                    plugins_dir=self.plugins_dir,
                    settings=self._settings,
                    logger=get_event_logger(f"plugin_host.plugins.{name}"),
                )
                await call_handler(init, context)
        except Exception as e:
            sys.modules.pop(module.__name__, None)
            raise LoadFailure(path.name, summarize_error(e)) from e

        cleanup = read_field(info, "cleanup")
        record = PluginRecord(
            name=name,
            path=path,
            metadata=metadata,
            handler=handler,
            loaded_at=self._clock.now(),
            module_name=module.__name__,
            command_handlers=commands,
            button_handlers=buttons,
            cleanup=cleanup if callable(cleanup) else None,
            module=module,
        )

        try:
            self._registry.insert(record)
        except ValueError as e:
            sys.modules.pop(module.__name__, None)
            raise LoadFailure(path.name, str(e)) from e

        self._metrics.reset(name)
        if buttons:
            self._dispatcher.register_buttons(name, buttons)
        # from_info already warned about a malformed task list
        if metadata.scheduled_tasks:
            keys = self._supervisor.register_tasks(name, tasks)
            record.has_scheduled_tasks = bool(keys)

        logger.info(f"Loaded plugin: {name} v{metadata.version}")
        return record

    async def _import(self, path: Path) -> ModuleType:
        try:
            source = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise LoadFailure(path.name, summarize_error(e)) from e

        module_name = f"_plugin_{path.stem}_{next(self._counter)}_{uuid4().hex[:8]}"
        loader = FreshSourceLoader(module_name, str(path), source)
        spec = importlib.util.spec_from_file_location(module_name, path, loader=loader)
        if spec is None:
            raise LoadFailure(path.name, "cannot build import spec")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module

        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            log_plugin_event(
                "plugin_load_failed",
                level="error",
                kind=FailureKind.LOAD.value,
                file=path.name,
                reason=summarize_error(e),
            )
            raise LoadFailure(path.name, summarize_error(e)) from e

        return module

    # === Unloading ===

    async def unload(self, name: str) -> bool:
        """Remove a plugin, cancelling its tasks. Returns False if not loaded."""
        async with self._lock:
            return await self._unload(name)

    async def _unload(self, name: str) -> bool:
        record = self._registry.remove(name, self._supervisor.cancel_plugin_tasks)
        if record is None:
            return False

        self._dispatcher.unregister_buttons(name)
        if record.cleanup is not None:
            try:
                await call_handler(record.cleanup)
            except Exception as e:
                logger.warning(f"Cleanup failed for plugin {name}: {e}")
        sys.modules.pop(record.module_name, None)
        self._metrics.remove(name)
        logger.info(f"Unloaded plugin: {name}")
        return True

    async def reload(self, name: str) -> bool:
        """
        Unload a plugin and load its file again.

        On failure the plugin stays absent from the registry.
        """
        async with self._lock:
            record = self._registry.get(name)
            path = record.path if record is not None else self.plugin_path(name)
            await self._unload(name)

            if not await asyncio.to_thread(path.is_file):
                logger.warning(f"Cannot reload {name}: {path} not found")
                return False

            reloaded = await self._load_or_log(path)
            if reloaded is None:
                logger.error(f"Reload of plugin {name} failed; plugin left unloaded")
                return False
            logger.info(f"Reloaded plugin: {name}")
            return True

    async def promote_from_disabled(self, name: str) -> bool:
        """
        Load a plugin that is not in the registry.

        Uses the file in the plugins directory if there is one, otherwise
        moves it out of the disabled directory first.
        """
        async with self._lock:
            if name in self._registry:
                return True
            target = self.plugin_path(name)
            if not await asyncio.to_thread(target.is_file):
                source = self.disabled_dir / target.name
                if not await asyncio.to_thread(source.is_file):
                    logger.warning(f"Plugin {name} not found in plugins or disabled dir")
                    return False
                try:
                    await asyncio.to_thread(shutil.move, str(source), str(target))
                except OSError as e:
                    logger.error(f"Failed to move {source} to {target}: {e}")
                    return False
                logger.info(f"Moved {target.name} out of {self.disabled_dir.name}/")

            return await self._load_or_log(target) is not None

    async def uninstall(self, name: str) -> bool:
        """Unload a plugin and delete its file."""
        async with self._lock:
            record = self._registry.get(name)
            path = record.path if record is not None else self.plugin_path(name)
            unloaded = await self._unload(name)

            try:
                await asyncio.to_thread(path.unlink)
            except FileNotFoundError:
                return unloaded
            except OSError as e:
                logger.error(f"Failed to delete {path}: {e}")
                return False
            logger.info(f"Uninstalled plugin: {name}")
            return True

    async def unload_all(self) -> int:
        """Unload every plugin (used on shutdown). Returns how many were removed."""
        async with self._lock:
            names = self._registry.names()
            for name in names:
                await self._unload(name)
            self._has_loaded = False
            return len(names)
