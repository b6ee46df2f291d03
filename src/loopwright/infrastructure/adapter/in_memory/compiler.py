from typing import Any

from loopwright.application.port import ScriptCompiler
from loopwright.domain.entity import CompiledScript
from loopwright.domain.exception import CompilationError
from loopwright.script import Script


class InMemoryScriptCompiler(ScriptCompiler):
    """Compiles scripts registered under a name."""

    def __init__(self, scripts: dict[str, Script | CompiledScript] | None = None):
        """
        Initializes the compiler with optional named scripts.

        :param scripts: Scripts keyed by the name they are compiled by
        :type scripts: dict[str, Script | CompiledScript] | None
        """
        self._registry: dict[str, Script | CompiledScript] = dict(scripts or {})

    def register(self, name: str, script: Script | CompiledScript) -> None:
        self._registry[name] = script

    def compile(self, source_path: str, options: dict[str, Any] | None = None) -> CompiledScript:
        """
        Returns the compiled form of the script registered as ``source_path``.

        :param source_path: The registered script name
        :type source_path: str
        :param options: Unused
        :type options: dict[str, Any] | None
        :returns: The compiled script
        :rtype: CompiledScript
        :raises CompilationError: If no script is registered under the name
        """
        try:
            script = self._registry[source_path]
        except KeyError:
            raise CompilationError(f"No test script registered as '{source_path}'", source=source_path) from None
        if isinstance(script, Script):
            return script.compile()
        return script
