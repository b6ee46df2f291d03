import os
from enum import Enum

import msgspec

GLOBAL_RECOVERY = "global"


class Status(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    UNEXECUTED = "unexecuted"


class RecoverWith(str, Enum):
    """Outcome declared by a recovery step, driving what the traversal does next."""

    CONTINUE = "continue"
    RESTART = "restart"
    RETRY = "retry"


class Viewport(msgspec.Struct, frozen=True, forbid_unknown_fields=True):
    width: int
    height: int


class Settings(msgspec.Struct, kw_only=True, frozen=True, forbid_unknown_fields=True):
    """Script-level configuration.

    ``loop_count`` of zero or less means no iteration bound, ``duration`` of zero
    or less means no time bound. ``tries`` is the recovery bound used when a
    recovery entry does not declare its own ``loop_count``.
    """

    name: str = ""
    description: str = ""
    loop_count: int = 1
    duration: float = -1.0
    tries: int = 1
    step_delay: float = 0.0
    viewport: Viewport | None = None
    ignore_https_errors: bool = False
    launch_args: list[str] = []
    sandbox: bool | None = None
    browser_version: str | None = None


class LaunchOptions(msgspec.Struct, kw_only=True, frozen=True, forbid_unknown_fields=True):
    """Options handed to a browser driver when a session is launched."""

    headless: bool = True
    devtools: bool = False
    sandbox: bool | None = None
    browser_version: str | None = None
    ignore_https_errors: bool = False
    viewport: Viewport | None = None
    args: list[str] = []
    debug: bool = False

    @classmethod
    def from_env(cls, **overrides) -> "LaunchOptions":
        """
        Build launch options, disabling the browser sandbox when ``NO_CHROME_SANDBOX=1``.

        :param overrides: Field values that take precedence over the environment
        :returns: The launch options
        :rtype: LaunchOptions
        """
        if os.environ.get("NO_CHROME_SANDBOX") == "1":
            overrides.setdefault("sandbox", False)
        return cls(**overrides)
