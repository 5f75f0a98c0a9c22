"""
Message Dispatcher.

Fans each inbound event out to every enabled plugin concurrently. A
plugin's exception is recorded against that plugin only; it never reaches
sibling plugins or the caller of dispatch().
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..core.typed_config import HostLimits
from ..domain.errors import FailureKind
from ..scheduling.clock import Clock
from ..utils.invoke import Handler, call_handler, read_field, summarize_error
from ..utils.logging import log_plugin_event
from .base import PluginRecord
from .metrics import MetricsStore
from .registry import PluginRegistry

logger = logging.getLogger(__name__)

ButtonIdExtractor = Callable[[Any], Optional[str]]


def extract_button_id(event: Any) -> Optional[str]:
    """Return the pressed button's identifier, or None for ordinary messages."""
    button_id = read_field(event, "button_id", "selected_button_id", "selectedButtonId")
    return str(button_id) if button_id else None


@dataclass
class DispatchOutcome:
    """Per-event result: which plugins ran and which of them failed."""

    invoked: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)
    button_handled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed


class MessageDispatcher:
    """Concurrent fan-out of inbound events to plugin handlers."""

    def __init__(
        self,
        registry: PluginRegistry,
        metrics: MetricsStore,
        clock: Clock,
        limits: Optional[HostLimits] = None,
        load_plugins: Optional[Callable[[], Awaitable[Any]]] = None,
        is_loaded: Optional[Callable[[], bool]] = None,
        button_id_extractor: ButtonIdExtractor = extract_button_id,
    ) -> None:
        self._registry = registry
        self._metrics = metrics
        self._clock = clock
        self._limits = limits or HostLimits()
        self._load_plugins = load_plugins
        self._is_loaded = is_loaded
        self._extract_button_id = button_id_extractor
        self._buttons_lock = threading.Lock()
        # button id -> (plugin name, handler)
        self._buttons: Dict[str, Tuple[str, Handler]] = {}

    # === Button handlers ===

    def register_buttons(self, plugin_name: str, handlers: Dict[str, Handler]) -> None:
        with self._buttons_lock:
            for button_id, handler in handlers.items():
                existing = self._buttons.get(button_id)
                if existing is not None and existing[0] != plugin_name:
                    logger.warning(
                        f"Button {button_id} from {plugin_name} overrides "
                        f"handler from {existing[0]}"
                    )
                self._buttons[button_id] = (plugin_name, handler)
        logger.debug(f"Registered {len(handlers)} button handlers for {plugin_name}")

    def unregister_buttons(self, plugin_name: str) -> None:
        with self._buttons_lock:
            for button_id in [b for b, (p, _) in self._buttons.items() if p == plugin_name]:
                del self._buttons[button_id]

    def button_handler(self, button_id: str) -> Optional[Tuple[str, Handler]]:
        with self._buttons_lock:
            return self._buttons.get(button_id)

    # === Dispatch ===

    async def dispatch(self, event: Any, transport: Any = None, config: Any = None) -> DispatchOutcome:
        """
        Deliver one event to every enabled plugin and wait for all of them.

        Button responses additionally go to the handler registered for the
        pressed button.
        """
        await self._ensure_loaded()

        plugins = self._registry.enabled()
        outcome = DispatchOutcome(invoked=[p.name for p in plugins])

        jobs = [self._execute(p, p.handler, event, transport, config) for p in plugins]
        button_id = self._safe_button_id(event)
        if button_id is not None:
            jobs.append(self._run_button(button_id, event, transport, config))

        results = await asyncio.gather(*jobs, return_exceptions=True)

        for plugin, result in zip(plugins, results):
            if isinstance(result, BaseException):
                # _execute does not raise; anything here is a host bug
                logger.error(
                    f"Unexpected dispatch error for {plugin.name}: {result}",
                    exc_info=(type(result), result, result.__traceback__),
                )
                outcome.failed.append(plugin.name)
                continue
            ok, disabled = result
            if not ok:
                outcome.failed.append(plugin.name)
            if disabled:
                outcome.disabled.append(plugin.name)

        if button_id is not None:
            outcome.button_handled = results[-1] is True
        return outcome

    async def _ensure_loaded(self) -> None:
        if self._load_plugins is None:
            return
        loaded = self._is_loaded() if self._is_loaded is not None else len(self._registry) > 0
        if not loaded:
            try:
                await self._load_plugins()
            except Exception as e:
                logger.error(f"Lazy plugin load failed: {e}", exc_info=True)

    def _safe_button_id(self, event: Any) -> Optional[str]:
        try:
            return self._extract_button_id(event)
        except Exception as e:
            logger.warning(f"Could not read button id from event: {e}")
            return None

    async def _execute(
        self,
        plugin: PluginRecord,
        handler: Handler,
        *args: Any,
    ) -> Tuple[bool, bool]:
        """
        Run one handler, time it and record the result.

        Returns:
            (succeeded, plugin was auto-disabled by this call)
        """
        started = self._clock.monotonic()
        error: Optional[BaseException] = None
        try:
            await call_handler(handler, *args)
        except Exception as e:
            error = e
        duration_ms = (self._clock.monotonic() - started) * 1000

        if duration_ms > self._limits.slow_handler_ms:
            logger.warning(f"Slow plugin: {plugin.name} took {duration_ms:.0f}ms")

        summary = summarize_error(error) if error is not None else None
        if error is not None:
            logger.error(
                f"Plugin {plugin.name} failed: {summary}",
                exc_info=(type(error), error, error.__traceback__),
            )

        stats = self._metrics.record_dispatch(
            plugin.name,
            duration_ms,
            ok=error is None,
            error_summary=summary,
            at=self._clock.now(),
        )

        disabled = False
        if error is not None and stats is not None:
            if stats.errors > self._limits.disable_threshold and plugin.enabled:
                disabled = self._auto_disable(plugin, stats.errors)
        return error is None, disabled

    def _auto_disable(self, plugin: PluginRecord, errors: int) -> bool:
        # Only disable the record that failed, not a reloaded replacement
        if self._registry.get(plugin.name) is not plugin:
            return False
        if not self._registry.set_enabled(plugin.name, False):
            return False
        logger.warning(f"Auto-disabled plugin {plugin.name} after {errors} errors")
        log_plugin_event(
            "plugin_auto_disabled",
            level="warning",
            kind=FailureKind.DISPATCH.value,
            plugin=plugin.name,
            errors=errors,
        )
        return True

    async def _run_button(self, button_id: str, event: Any, transport: Any, config: Any) -> bool:
        entry = self.button_handler(button_id)
        if entry is None:
            return False
        plugin_name, handler = entry
        if not self._registry.is_enabled(plugin_name):
            return False
        try:
            await call_handler(handler, event, transport, config)
        except Exception as e:
            logger.error(
                f"Button handler {button_id} of {plugin_name} failed: {e}", exc_info=True
            )
            return False
        return True

    # === Commands ===

    async def run_command(
        self,
        command: str,
        event: Any,
        transport: Any = None,
        config: Any = None,
    ) -> bool:
        """
        Invoke the command handler registered for a command name or alias.

        The call is timed and recorded like a dispatch.

        Returns:
            True if a handler ran and succeeded
        """
        await self._ensure_loaded()

        plugin = self._registry.find_by_command(command)
        if plugin is None:
            return False
        handler = plugin.command_handlers.get(command)
        if handler is None:
            logger.debug(f"Plugin {plugin.name} declares {command} but has no handler for it")
            return False

        ok, _ = await self._execute(plugin, handler, event, transport, config)
        return ok
