import importlib.util
import logging
import sys
import uuid
from pathlib import Path
from typing import Any

from loopwright.application.port import ScriptCompiler
from loopwright.domain.entity import CompiledScript
from loopwright.domain.exception import CompilationError
from loopwright.script import Script

logger = logging.getLogger(__name__)


class ModuleScriptCompiler(ScriptCompiler):
    """Compiles Python test script files.

    The file is executed from source as a fresh module on every compile,
    bypassing the bytecode cache, so edits are picked up by reruns. The module
    must expose a ``Script`` or ``CompiledScript`` under the attribute named by
    the ``attribute`` option (``script`` by default).
    """

    def compile(self, source_path: str, options: dict[str, Any] | None = None) -> CompiledScript:
        """
        Import ``source_path`` and compile the script it declares.

        :param source_path: Path of the Python test script
        :type source_path: str
        :param options: ``attribute`` names the module attribute holding the script
        :type options: dict[str, Any] | None
        :returns: The compiled script
        :rtype: CompiledScript
        :raises CompilationError: If the file is missing, fails to import, or declares no script
        """
        options = options or {}
        attribute = options.get("attribute", "script")
        path = Path(source_path)
        if not path.is_file():
            raise CompilationError(f"Test script not found: {source_path}", source=source_path)

        module_name = f"loopwright_script_{uuid.uuid4().hex}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise CompilationError(f"Cannot load test script: {source_path}", source=source_path)
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            # Not spec.loader.exec_module: its .pyc check compares mtimes at one-second
            # resolution, so an edit saved in the same second would run the stale bytecode.
            code = compile(path.read_text(encoding="utf-8"), str(path), "exec")
            exec(code, module.__dict__)
        except Exception as e:
            raise CompilationError(f"Test script {source_path} failed to import: {e}", source=source_path) from e
        finally:
            sys.modules.pop(module_name, None)
        logger.debug("Loaded test script module %s from %s", module_name, path)

        declared = getattr(module, attribute, None)
        if isinstance(declared, Script):
            if declared.source is None:
                declared.source = str(path)
            return declared.compile()
        if isinstance(declared, CompiledScript):
            return declared
        raise CompilationError(
            f"Test script {source_path} does not define '{attribute}' as a Script", source=source_path
        )
