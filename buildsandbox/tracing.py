"""
tracing.py

Runs the build under `strace -f` so that every child process (make, gcc,
cc1, as, ld...) ends up in one trace file. The build has to finish before
the trace is parsed.
"""
import shutil
import subprocess
from typing import List, Sequence

from buildsandbox.config import MAKE_PROGRAM, STRACE_PATH, STRACE_STRING_LIMIT


def strace_command(build_args: Sequence[str], trace_path, strace: str = STRACE_PATH,
                   string_limit: int = STRACE_STRING_LIMIT) -> List[str]:
    return [strace, "-f", "-s", str(string_limit), "-o", str(trace_path), *build_args]


def make_command(targets: Sequence[str] = (), make: str = MAKE_PROGRAM) -> List[str]:
    return [make, *targets]


def run_strace(build_args: Sequence[str], trace_path, strace: str = STRACE_PATH) -> int:
    """Trace `build_args` into `trace_path`, wait for it, return the exit status."""
    if shutil.which(strace) is None:
        raise FileNotFoundError(f"strace not found: {strace}")
    cmd = strace_command(build_args, trace_path, strace)
    print(f"[+] Tracing: {' '.join(cmd)}")
    return subprocess.run(cmd).returncode
