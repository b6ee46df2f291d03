"""
Loopwright - Scripted Browser Test Runs

Compiles a test script into an ordered list of steps and drives it against a
browser session for one or more iterations, recovering from failed steps and
reporting per-iteration results.
"""

from loopwright.client import Client, run_file, run_files
from loopwright.config import PersistentRunConfig, RunMode, SingleRunConfig, load_config
from loopwright.domain.entity import IterationResult, RunSummary, StepResult
from loopwright.domain.exception import CompilationError, LoopwrightError, RunCancelled, SessionError, StepFailure
from loopwright.domain.value_object import LaunchOptions, RecoverWith, Settings, Status, Viewport
from loopwright.factory import create
from loopwright.script import Script

__all__ = [
    "Client",
    "CompilationError",
    "IterationResult",
    "LaunchOptions",
    "LoopwrightError",
    "PersistentRunConfig",
    "RecoverWith",
    "RunCancelled",
    "RunMode",
    "RunSummary",
    "Script",
    "SessionError",
    "Settings",
    "SingleRunConfig",
    "Status",
    "StepFailure",
    "StepResult",
    "Viewport",
    "create",
    "load_config",
    "run_file",
    "run_files",
]
