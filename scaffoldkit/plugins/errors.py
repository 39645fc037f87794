"""Plugin error hierarchy."""

from __future__ import annotations


class PluginError(Exception):
    """Operational plugin error not tied to a load or execute phase."""

    def __init__(
        self, message: str, plugin_id: str = "unknown", cause: BaseException | None = None
    ) -> None:
        self.plugin_id = plugin_id
        self.cause = cause
        super().__init__(message)


class PluginLoadError(PluginError):
    """A plugin could not be loaded; it never becomes active."""


class PluginExecutionError(PluginError):
    """A call into an active plugin's generation logic failed or timed out."""


class PluginTimeoutError(PluginError):
    """A guarded plugin call did not settle before its deadline."""

    def __init__(self, message: str, plugin_id: str = "unknown", timeout: float = 0.0) -> None:
        self.timeout = timeout
        super().__init__(message, plugin_id)
