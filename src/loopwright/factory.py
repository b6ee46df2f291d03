from typing import Any

from loopwright.application.port import BrowserDriver, Reporter, RerunTrigger, RunLog, TraceAttacher
from loopwright.application.service import Orchestrator
from loopwright.client import Client
from loopwright.config import PersistentRunConfig, RunConfig, SingleRunConfig, load_config
from loopwright.infrastructure.adapter.in_memory.lifecycle import PersistentLifecycle, SingleShotLifecycle
from loopwright.infrastructure.adapter.in_memory.rerun_trigger import InMemoryRerunTrigger
from loopwright.infrastructure.adapter.logging.reporter import LoggingReporter
from loopwright.infrastructure.adapter.logging.sink import LoggerSink
from loopwright.infrastructure.adapter.playwright.driver import PlaywrightDriver


def create(
    config: RunConfig | dict[str, Any] | None = None,
    driver: BrowserDriver | None = None,
    reporter: Reporter | None = None,
    run_log: RunLog | None = None,
    trace_attacher: TraceAttacher | None = None,
    rerun_trigger: RerunTrigger | None = None,
    install_signal_handlers: bool = True,
) -> Client:
    """
    Factory function to create a Client for the configured run mode.

    :param config: The run configuration, as a dictionary or decoded; a single run by default
    :type config: RunConfig | dict[str, Any] | None
    :param driver: Browser driver, Playwright by default
    :type driver: BrowserDriver | None
    :param reporter: Result reporter, a logging reporter by default
    :type reporter: Reporter | None
    :param run_log: Run progress sink, a logging sink by default
    :type run_log: RunLog | None
    :param trace_attacher: Optional page traffic observer
    :type trace_attacher: TraceAttacher | None
    :param rerun_trigger: Rerun event source of a persistent run, in-memory by default
    :type rerun_trigger: RerunTrigger | None
    :param install_signal_handlers: Whether the client maps process signals to ``stop()``
    :type install_signal_handlers: bool
    :returns: A configured Client instance
    :rtype: Client
    :raises ValueError: If the configuration is invalid or its mode unsupported
    """
    config = load_config(config)

    driver = driver if driver is not None else PlaywrightDriver()
    reporter = reporter if reporter is not None else LoggingReporter()
    run_log = run_log if run_log is not None else LoggerSink()

    if isinstance(config, SingleRunConfig):
        lifecycle = SingleShotLifecycle()
        poll_interval = 1.0

    elif isinstance(config, PersistentRunConfig):
        lifecycle = PersistentLifecycle(rerun_trigger if rerun_trigger is not None else InMemoryRerunTrigger())
        poll_interval = config.poll_interval

    else:
        raise ValueError(f"Unsupported run configuration: {config!r}")

    orchestrator = Orchestrator(
        driver=driver,
        reporter=reporter,
        lifecycle=lifecycle,
        run_log=run_log,
        settings_overrides=dict(config.settings_overrides),
        launch_overrides=config.launch,
        trace_attacher=trace_attacher,
        poll_interval=poll_interval,
    )
    return Client(orchestrator, install_signal_handlers=install_signal_handlers)
