import asyncio
import logging
import signal
from typing import Any

import msgspec

from loopwright.application.port import RunLog, ScriptFactory
from loopwright.application.service import Orchestrator, script_factory
from loopwright.domain.entity import RunSummary
from loopwright.domain.exception import CompilationError, SessionError
from loopwright.domain.value_object import LaunchOptions
from loopwright.infrastructure.adapter.logging.sink import LoggerSink
from loopwright.infrastructure.adapter.module.compiler import ModuleScriptCompiler

logger = logging.getLogger(__name__)

STOP_SIGNALS = [sig for sig in (signal.SIGINT, signal.SIGTERM, getattr(signal, "SIGUSR2", None)) if sig is not None]

SEPARATOR = "-" * 60


class Client:
    """
    Client façade for test runs.

    The Client is what a host interacts with. It runs the orchestrator, maps
    interrupt and reload signals to a graceful stop, and turns run-level errors
    into a process exit code.

    SIGUSR2 stops the run exactly like SIGINT; it is not re-raised. A host
    running under a restarting file watcher reads ``received_signal`` after
    ``run`` returns and re-raises it itself.
    """

    def __init__(self, orchestrator: Orchestrator, install_signal_handlers: bool = True):
        """
        Initialize the client with a configured orchestrator.

        :param orchestrator: The run orchestrator
        :type orchestrator: Orchestrator
        :param install_signal_handlers: Whether ``run`` maps SIGINT, SIGTERM and SIGUSR2 to ``stop()``
        :type install_signal_handlers: bool
        """
        self._orchestrator = orchestrator
        self._install_signal_handlers = install_signal_handlers
        self._stop_task: asyncio.Task | None = None
        self._received_signal: signal.Signals | None = None

    @property
    def orchestrator(self) -> Orchestrator:
        return self._orchestrator

    @property
    def received_signal(self) -> signal.Signals | None:
        """The last stop signal handled, or None."""
        return self._received_signal

    @property
    def summary(self) -> RunSummary | None:
        return self._orchestrator.summary

    async def run(self, script_factory: ScriptFactory) -> int:
        """
        Run a test script to completion.

        :param script_factory: Coroutine function producing the compiled script
        :type script_factory: ScriptFactory
        :returns: 0, or 1 if the script could not be compiled or the browser not launched
        :rtype: int
        """
        loop = asyncio.get_running_loop()
        installed = []
        if self._install_signal_handlers:
            for sig in STOP_SIGNALS:
                try:
                    loop.add_signal_handler(sig, self._on_signal, sig)
                except (NotImplementedError, RuntimeError, ValueError):
                    logger.debug("Cannot handle %s in this event loop", sig.name)
                    continue
                installed.append(sig)
        try:
            await self._orchestrator.run(script_factory)
        except (CompilationError, SessionError) as e:
            logger.error("%s", e)
            return 1
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            if self._stop_task is not None:
                await self._stop_task
        return 0

    async def stop(self) -> None:
        await self._orchestrator.stop()

    def rerun(self) -> None:
        self._orchestrator.rerun()

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, stopping", sig.name)
        self._received_signal = sig
        if self._stop_task is None or self._stop_task.done():
            self._stop_task = asyncio.ensure_future(self.stop())


def run_file(path: str, config: dict[str, Any] | None = None, attribute: str = "script") -> int:
    """
    Run the test script defined in a Python file.

    :param path: Path of the test script
    :type path: str
    :param config: Run configuration dictionary; a single headless run by default
    :type config: dict[str, Any] | None
    :param attribute: Module attribute holding the script
    :type attribute: str
    :returns: The process exit code
    :rtype: int
    """
    return asyncio.run(_run_path(path, _default_config(config), attribute))


def run_files(
    paths: list[str],
    config: dict[str, Any] | None = None,
    attribute: str = "script",
    run_log: RunLog | None = None,
) -> int:
    """
    Run the test scripts of several Python files one after another.

    Each file gets its own browser session. A stop signal ends the current
    file and skips the rest.

    :param paths: Paths of the test scripts, run in order
    :type paths: list[str]
    :param config: Run configuration dictionary shared by every file
    :type config: dict[str, Any] | None
    :param attribute: Module attribute holding the script
    :type attribute: str
    :param run_log: Sink for the per-file banners
    :type run_log: RunLog | None
    :returns: 1 if any file could not be run, otherwise 0
    :rtype: int
    """
    run_log = run_log if run_log is not None else LoggerSink(logging.getLogger("loopwright.files"))
    return asyncio.run(_run_paths(paths, _default_config(config), attribute, run_log))


def _default_config(config: dict[str, Any] | None) -> dict[str, Any]:
    if config is None:
        return {"launch": msgspec.to_builtins(LaunchOptions.from_env())}
    return config


async def _run_path(path: str, config: dict[str, Any], attribute: str) -> int:
    client = _client(config)
    return await client.run(script_factory(ModuleScriptCompiler(), path, {"attribute": attribute}))


async def _run_paths(paths: list[str], config: dict[str, Any], attribute: str, run_log: RunLog) -> int:
    exit_code = 0
    total = len(paths)
    run_log.open()
    try:
        for index, path in enumerate(paths, start=1):
            client = _client(config)
            run_log.group("Running %s (%d of %d)", path, index, total)
            try:
                code = await client.run(script_factory(ModuleScriptCompiler(), path, {"attribute": attribute}))
            finally:
                run_log.group_end()
            run_log.info("%s", SEPARATOR)
            if code != 0:
                exit_code = 1
            if client.orchestrator.stopped:
                if index < total:
                    run_log.warning("Stopped, skipping %d remaining test files", total - index)
                break
    finally:
        run_log.close()
    return exit_code


def _client(config: dict[str, Any]) -> Client:
    from loopwright.factory import create

    return create(config)
