"""
plugin-host: a plugin host and supervisor for event-driven chatbots.

Discovers single-file plugins from a directory, fans inbound events out
to them concurrently, runs their cron-scheduled tasks, tracks per-plugin
metrics and quarantines plugins and tasks that misbehave.

Usage:
    from plugin_host.plugins import PluginManager

    manager = PluginManager()
    await manager.load_all()
    await manager.start()
    await manager.dispatch(event, transport, config)
"""
