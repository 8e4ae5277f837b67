"""
Wiring for the telemetry core.

``Telemetry`` builds the structured logger, metrics aggregator, cache and
request hook from one ``TelemetryConfig`` and installs them into a Flask
app::

    telemetry = Telemetry(TelemetryConfig.from_file("telemetry.json"))
    telemetry.init_app(app)
"""

from typing import Optional

from flask import Flask

from .cache import CacheSweeper, ExpiringCache
from .config import TelemetryConfig
from .observability.context import CorrelationContext, get_correlation_context
from .observability.hooks import RequestLifecycleHook, install_error_handler
from .observability.logging import StructuredLogger, setup_structured_logger
from .observability.metrics import MetricsAggregator
from .routes import telemetry_bp

EXTENSION_KEY = "request_telemetry"


class Telemetry:
    """One instance per application process."""

    def __init__(
        self,
        config: Optional[TelemetryConfig] = None,
        *,
        context: Optional[CorrelationContext] = None,
        metrics: Optional[MetricsAggregator] = None,
        cache: Optional[ExpiringCache] = None,
    ) -> None:
        self.config = config if config is not None else TelemetryConfig()
        self.context = context if context is not None else get_correlation_context()

        sink = setup_structured_logger(
            self.config.service_name,
            self.config.log_file,
            level=self.config.log_level,
            fmt=self.config.log_format,
            service=self.config.service_name,
        )
        self.logger = StructuredLogger(
            sink,
            context=self.context,
            app_prefixes=self.config.app_module_prefixes,
        )
        self.metrics = (
            metrics if metrics is not None else MetricsAggregator(window_size=self.config.window_size)
        )
        self.cache = cache if cache is not None else ExpiringCache(self.config.default_ttl_seconds)
        self.sweeper = CacheSweeper(self.cache, self.config.sweep_interval_seconds)
        self.hook = RequestLifecycleHook(
            self.logger,
            self.metrics,
            context=self.context,
            trace_header=self.config.trace_header,
            excluded_paths=self.config.excluded_paths,
        )

    def init_app(
        self,
        app: Flask,
        *,
        error_handler: bool = True,
        routes: bool = True,
        start_sweeper: bool = False,
    ) -> None:
        """Install hooks (and optionally the error handler, routes and sweeper) on *app*.

        Without configured ``app_module_prefixes`` the top-level package of
        ``app.import_name`` is treated as application code.
        """
        app.extensions[EXTENSION_KEY] = self
        if not self.logger.app_prefixes:
            self.logger.app_prefixes = (app.import_name.split(".")[0],)
        self.hook.install_flask(app)
        if error_handler:
            install_error_handler(app, self.logger)
        if routes:
            app.register_blueprint(telemetry_bp)
        if start_sweeper:
            self.sweeper.start()

    def shutdown(self) -> None:
        self.sweeper.stop()
