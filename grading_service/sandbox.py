"""
Sandboxed execution of submitted code, one OS process per test case.

Each language has a LanguageExecutor that writes the submission and its
harness into a throwaway directory, starts the interpreter in a new process
group with POSIX resource limits, and waits for it under a wall-clock
deadline. Failures (timeouts, crashes, oversized output) are returned as an
ExecutionOutcome, never raised.
"""

import asyncio
import json
import keyword
import logging
import math
import os
import re
import signal
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type

from grading_service.config import Settings, settings as default_settings
from grading_service.harness import JAVASCRIPT_HARNESS, PYTHON_HARNESS
from grading_service.metrics import SANDBOX_EXECUTION_SECONDS
from grading_service.schemas import Language

logger = logging.getLogger("sandbox")

ARGS_FILENAME = "args.json"
RESULT_FILENAME = "result.out"
STDOUT_FILENAME = "stdout.log"
STDERR_FILENAME = "stderr.log"

MAX_ERROR_CHARS = 2000

_MEMORY_MARKERS = (
    "MemoryError", "heap out of memory", "Allocation failed", "allocation failed",
    "Invalid array buffer length",
)


@dataclass
class ExecutionOutcome:
    return_value: Optional[str]
    stdout: str
    stderr: str
    timed_out: bool
    execution_time_ms: int
    exit_code: Optional[int]
    output_too_large: bool = False
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return not self.error and self.return_value is not None


def _read_capped(path: Path, limit: int) -> str:
    if not path.exists():
        return ""
    with open(path, "rb") as f:
        return f.read(limit).decode("utf-8", errors="replace")


def _kill_process_group(pid: int) -> None:
    try:
        os.killpg(pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def _limit_resources(
    cpu_seconds: int,
    memory_bytes: int,
    file_bytes: int,
    memory_resource: str = "RLIMIT_AS",
) -> Callable[[], None]:
    """Build the preexec hook that applies rlimits inside the child."""

    def set_limits():
        import resource

        limits = [
            (resource.RLIMIT_CPU, cpu_seconds),
            (resource.RLIMIT_FSIZE, file_bytes),
            (resource.RLIMIT_CORE, 0),
            (getattr(resource, memory_resource), memory_bytes),
        ]
        for which, value in limits:
            try:
                resource.setrlimit(which, (value, value))
            except (ValueError, OSError):
                pass

    return set_limits


class LanguageExecutor:
    """Runs one submission against one argument list for a single language."""

    language: Language
    source_filename = ""
    harness_filename = ""
    harness_source = ""
    memory_resource = "RLIMIT_AS"
    # Runtime footprint allowed on top of the exercise's memory limit.
    memory_overhead_mb = 0

    def __init__(self, executable: str, max_output_bytes: int = 1024 * 1024):
        self.executable = executable
        self.max_output_bytes = max_output_bytes

    def is_valid_function_name(self, name: str) -> bool:
        raise NotImplementedError

    def build_command(self, workdir: Path, function_name: str, memory_limit_mb: int) -> List[str]:
        raise NotImplementedError

    def environment(self, workdir: Path) -> Dict[str, str]:
        return {
            "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
            "HOME": str(workdir),
            "TMPDIR": str(workdir),
            "LANG": "C.UTF-8",
        }

    def harness_args(self, workdir: Path, function_name: str) -> List[str]:
        return [
            str(workdir / self.harness_filename),
            str(workdir / self.source_filename),
            str(workdir / ARGS_FILENAME),
            str(workdir / RESULT_FILENAME),
            function_name,
        ]

    async def execute(
        self,
        code: str,
        args: List[Any],
        function_name: str,
        time_limit: float,
        memory_limit_mb: int = 128,
    ) -> ExecutionOutcome:
        if not self.is_valid_function_name(function_name):
            return ExecutionOutcome(
                return_value=None, stdout="", stderr="", timed_out=False,
                execution_time_ms=0, exit_code=None,
                error=f"Invalid entry point name: {function_name!r}",
            )

        try:
            encoded_args = json.dumps(args, allow_nan=False)
        except (TypeError, ValueError) as e:
            return ExecutionOutcome(
                return_value=None, stdout="", stderr="", timed_out=False,
                execution_time_ms=0, exit_code=None,
                error=f"Arguments cannot be passed to the submission: {e}",
            )

        with tempfile.TemporaryDirectory(prefix="grading-") as temp_dir:
            workdir = Path(temp_dir)
            (workdir / self.source_filename).write_text(code, encoding="utf-8")
            (workdir / self.harness_filename).write_text(self.harness_source, encoding="utf-8")
            (workdir / ARGS_FILENAME).write_text(encoded_args, encoding="utf-8")

            outcome = await self._run(workdir, function_name, time_limit, memory_limit_mb)

        SANDBOX_EXECUTION_SECONDS.labels(language=self.language.value).observe(
            outcome.execution_time_ms / 1000
        )
        return outcome

    async def _run(
        self,
        workdir: Path,
        function_name: str,
        time_limit: float,
        memory_limit_mb: int,
    ) -> ExecutionOutcome:
        command = self.build_command(workdir, function_name, memory_limit_mb)
        popen_kwargs = {}
        if os.name == "posix":
            popen_kwargs["start_new_session"] = True
            popen_kwargs["preexec_fn"] = _limit_resources(
                cpu_seconds=math.ceil(time_limit) + 1,
                memory_bytes=(memory_limit_mb + self.memory_overhead_mb) * 1024 * 1024,
                file_bytes=self.max_output_bytes,
                memory_resource=self.memory_resource,
            )

        stdout_path = workdir / STDOUT_FILENAME
        stderr_path = workdir / STDERR_FILENAME
        timed_out = False

        with open(stdout_path, "wb") as stdout_file, open(stderr_path, "wb") as stderr_file:
            start = time.perf_counter()
            try:
                proc = await asyncio.create_subprocess_exec(
                    *command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=stdout_file,
                    stderr=stderr_file,
                    cwd=str(workdir),
                    env=self.environment(workdir),
                    **popen_kwargs,
                )
            except OSError as e:
                logger.error(f"Could not start {self.language.value} runtime {self.executable!r}: {e}")
                return ExecutionOutcome(
                    return_value=None, stdout="", stderr=str(e), timed_out=False,
                    execution_time_ms=0, exit_code=None,
                    error=f"Unable to start the {self.language.value} runtime",
                )

            try:
                await asyncio.wait_for(proc.wait(), timeout=time_limit)
            except asyncio.TimeoutError:
                timed_out = True
                if os.name == "posix":
                    _kill_process_group(proc.pid)
                else:
                    proc.kill()
                await proc.wait()
            finally:
                elapsed_ms = int((time.perf_counter() - start) * 1000)
                # Also reaps anything the submission left running in its group.
                if os.name == "posix":
                    _kill_process_group(proc.pid)
                elif proc.returncode is None:
                    proc.kill()

        return self._collect(workdir, proc.returncode, timed_out, elapsed_ms, time_limit)

    def _collect(
        self,
        workdir: Path,
        exit_code: Optional[int],
        timed_out: bool,
        elapsed_ms: int,
        time_limit: float,
    ) -> ExecutionOutcome:
        limit = self.max_output_bytes
        stdout_path = workdir / STDOUT_FILENAME
        stderr_path = workdir / STDERR_FILENAME
        result_path = workdir / RESULT_FILENAME

        output_too_large = any(
            p.exists() and p.stat().st_size >= limit
            for p in (stdout_path, stderr_path, result_path)
        )
        if os.name == "posix" and exit_code == -getattr(signal, "SIGXFSZ", 25):
            output_too_large = True

        stdout = _read_capped(stdout_path, limit)
        stderr = _read_capped(stderr_path, limit).strip()

        return_value = None
        if not timed_out and exit_code == 0 and result_path.exists():
            return_value = _read_capped(result_path, limit)

        if timed_out:
            error = f"Time limit exceeded: execution did not finish within {time_limit:g} seconds"
        elif output_too_large:
            error = f"Output limit exceeded: more than {limit} bytes written"
        elif exit_code != 0:
            if any(marker in stderr for marker in _MEMORY_MARKERS):
                error = "Memory limit exceeded"
            elif exit_code == -getattr(signal, "SIGXCPU", 24):
                error = f"Time limit exceeded: CPU time limit of {math.ceil(time_limit) + 1} seconds reached"
            elif stderr:
                error = stderr[-MAX_ERROR_CHARS:]
            elif exit_code is not None and exit_code < 0:
                error = f"Process killed by signal {-exit_code}"
            else:
                error = f"Process exited with code {exit_code}"
        elif return_value is None:
            error = "Submission finished without producing a result"
        else:
            error = ""

        return ExecutionOutcome(
            return_value=return_value,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
            execution_time_ms=elapsed_ms,
            exit_code=exit_code,
            output_too_large=output_too_large,
            error=error,
        )


class PythonExecutor(LanguageExecutor):
    language = Language.PYTHON
    source_filename = "solution.py"
    harness_filename = "harness.py"
    harness_source = PYTHON_HARNESS

    def is_valid_function_name(self, name: str) -> bool:
        return bool(name) and name.isidentifier() and not keyword.iskeyword(name)

    def build_command(self, workdir: Path, function_name: str, memory_limit_mb: int) -> List[str]:
        # -I isolates from env vars and user site, -B skips .pyc writes.
        return [self.executable, "-I", "-B", "-X", "utf8", *self.harness_args(workdir, function_name)]


_JS_IDENTIFIER = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
_JS_RESERVED = frozenset(
    "break case catch class const continue debugger default delete do else export "
    "extends false finally for function if import in instanceof new null return super "
    "switch this throw true try typeof var void while with yield let static await".split()
)


class JavaScriptExecutor(LanguageExecutor):
    language = Language.JAVASCRIPT
    source_filename = "solution.js"
    harness_filename = "harness.js"
    harness_source = JAVASCRIPT_HARNESS
    # V8 reserves far more address space than it touches, so node is capped on
    # written (data) memory instead, which also covers ArrayBuffer storage
    # living outside the JS heap.
    memory_resource = "RLIMIT_DATA"
    memory_overhead_mb = 512

    def is_valid_function_name(self, name: str) -> bool:
        return bool(name) and bool(_JS_IDENTIFIER.match(name)) and name not in _JS_RESERVED

    def build_command(self, workdir: Path, function_name: str, memory_limit_mb: int) -> List[str]:
        return [
            self.executable,
            f"--max-old-space-size={memory_limit_mb}",
            *self.harness_args(workdir, function_name),
        ]

    def environment(self, workdir: Path) -> Dict[str, str]:
        env = super().environment(workdir)
        env["NODE_OPTIONS"] = ""
        return env


EXECUTORS: Dict[Language, Type[LanguageExecutor]] = {
    Language.PYTHON: PythonExecutor,
    Language.JAVASCRIPT: JavaScriptExecutor,
}


def build_executors(config: Settings = default_settings) -> Dict[Language, LanguageExecutor]:
    executables = {
        Language.PYTHON: config.python_executable,
        Language.JAVASCRIPT: config.node_executable,
    }
    return {
        language: executor_cls(executables[language], max_output_bytes=config.max_output_bytes)
        for language, executor_cls in EXECUTORS.items()
    }


async def execute(
    code: str,
    language: Language,
    args: List[Any],
    function_name: str,
    time_limit: float,
    memory_limit_mb: int = 128,
    executors: Optional[Dict[Language, LanguageExecutor]] = None,
) -> ExecutionOutcome:
    executors = executors or build_executors()
    executor = executors.get(Language(language))
    if executor is None:
        raise ValueError(f"Unsupported language: {language}")
    return await executor.execute(code, args, function_name, time_limit, memory_limit_mb)
