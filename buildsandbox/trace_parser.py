"""
trace_parser.py

Classifies single lines of `strace -f` output into small event records.
Only the handful of syscalls needed to follow a gcc build are recognized:

    1234 execve("/usr/bin/gcc", ["gcc", "-o", "prog", "main.c"], ...) = 0
    1234 chdir("/src/sub") = 0
    1234 openat(AT_FDCWD, "util.h", O_RDONLY) = 3
    1234 openat(AT_FDCWD, "x.h", O_RDONLY <unfinished ...>
    1234 <... openat resumed>) = -1 ENOENT (No such file or directory)
    1234 vfork( <unfinished ...>
    1234 <... vfork resumed>) = 1240

Everything else is noise and yields no event.
"""
import os
import re
import sys
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Tuple

from buildsandbox.config import MAX_LINE_LENGTH, SOURCE_SUFFIXES

# "1234  syscall(" from `strace -f -o file`, "[pid  1234] syscall(" on stderr
PID_PREFIX = r'^\s*(?:\[pid\s+)?(?P<pid>\d+)\]?\s+'
QUOTED = r'"(?:[^"\\]|\\.)*"'

RE_EXECVE = re.compile(
    PID_PREFIX + r'execve\("(?P<path>(?:[^"\\]|\\.)*)",\s*\[(?P<args>(?:' + QUOTED + r'|[^\]"])*)\]'
)
RE_CHDIR = re.compile(PID_PREFIX + r'chdir\("(?P<path>(?:[^"\\]|\\.)*)"')
RE_OPENAT = re.compile(PID_PREFIX + r'openat\((?P<dirfd>[^,]*),\s*"(?P<path>(?:[^"\\]|\\.)*)"')
RE_OPENAT_RESUMED = re.compile(PID_PREFIX + r'<\.\.\. openat resumed>')
RE_PID_ONLY = re.compile(PID_PREFIX)
RE_SPAWN = re.compile(
    PID_PREFIX + r'(?:(?:clone3?|fork|vfork)\(.*\)|<\.\.\. (?:clone3?|fork) resumed>.*)\s*=\s*(?P<child>\d+)'
)
RE_RESUMED_CHILD = re.compile(r'=\s*(?P<child>\d+)')
RE_TOKEN = re.compile(r'"((?:[^"\\]|\\.)*)"')
RE_ESCAPE = re.compile(r'\\(["\\])')

NO_SUCH_FILE = "ENOENT"


@dataclass(frozen=True)
class Exec:
    pid: int
    path: str
    raw_args: str

    @property
    def name(self) -> str:
        return executable_name(self.path)

    @property
    def args(self) -> Tuple[str, ...]:
        return split_args(self.raw_args)

    @property
    def command(self) -> str:
        return " ".join(self.args)


@dataclass(frozen=True)
class ChangeDir:
    pid: int
    path: str


@dataclass(frozen=True)
class OpenAttempt:
    pid: int
    path: str
    failed: bool = False


@dataclass(frozen=True)
class OpenPending:
    """An openat split by strace; its result arrives on a later "resumed" line."""
    pid: int
    path: str


@dataclass(frozen=True)
class OpenResumed:
    pid: int
    failed: bool = False


@dataclass(frozen=True)
class ForkBegin:
    pid: int


@dataclass(frozen=True)
class ForkResume:
    pid: int
    child_pid: Optional[int] = None


@dataclass(frozen=True)
class Spawn:
    """A clone/fork that returned a child pid; the child inherits the cwd."""
    pid: int
    child_pid: int


def _unescape(text: str) -> str:
    return RE_ESCAPE.sub(r'\1', text)


def _result(line: str) -> str:
    # text after the last "=", i.e. the return value (and errno name)
    if "=" not in line:
        return ""
    return line.rsplit("=", maxsplit=1)[1].strip()


def executable_name(path: str) -> str:
    """Final path component of an executable path: /usr/bin/gcc -> gcc."""
    return os.path.basename(path.rstrip("/"))


def split_args(raw_args: str) -> Tuple[str, ...]:
    """
    Split the bracketed argv of an execve line into its quoted tokens.
    Quotes and the separating commas are dropped, escapes are undone.
    """
    return tuple(_unescape(tok) for tok in RE_TOKEN.findall(raw_args))


def extract_source(raw_args: str) -> Optional[str]:
    """
    Return the first source-like file name in an execve argument list.

    Suffixes are tried in priority order (.cc, .c, .o, .s); the match is
    widened backwards to the opening quote of its token.
    """
    for suffix in SOURCE_SUFFIXES:
        idx = raw_args.find(suffix)
        if idx == -1:
            continue
        start = raw_args.rfind('"', 0, idx) + 1
        return raw_args[start:idx + len(suffix)]
    return None


def parse_line(line: str):
    """
    Classify one trace line. Returns an event or None for anything that is
    not one of the recognized shapes.
    """
    m = RE_EXECVE.search(line)
    if m:
        # failed execs (PATH lookups) are not commands
        if NO_SUCH_FILE in line[m.end():]:
            return None
        return Exec(int(m.group("pid")), _unescape(m.group("path")), m.group("args"))
    if "execve(" in line:
        return None

    m = RE_CHDIR.search(line)
    if m:
        if _result(line).startswith("-1"):
            return None
        return ChangeDir(int(m.group("pid")), _unescape(m.group("path")))

    m = RE_OPENAT.search(line)
    if m:
        rest = line[m.end():]
        if "<unfinished" in rest:
            return OpenPending(int(m.group("pid")), _unescape(m.group("path")))
        failed = NO_SUCH_FILE in rest
        return OpenAttempt(int(m.group("pid")), _unescape(m.group("path")), failed)

    m = RE_OPENAT_RESUMED.search(line)
    if m:
        return OpenResumed(int(m.group("pid")), NO_SUCH_FILE in line[m.end():])

    if "vfork(" in line and "unfinished" in line:
        m = RE_PID_ONLY.search(line)
        return ForkBegin(int(m.group("pid"))) if m else None
    if "vfork resumed" in line:
        m = RE_PID_ONLY.search(line)
        if not m:
            return None
        child = RE_RESUMED_CHILD.search(line, m.end())
        return ForkResume(int(m.group("pid")), int(child.group("child")) if child else None)

    m = RE_SPAWN.search(line)
    if m:
        return Spawn(int(m.group("pid")), int(m.group("child")))
    return None


def iter_events(lines: Iterable[str], max_length: int = MAX_LINE_LENGTH) -> Iterator:
    """Yield the events of a trace, in file order. Oversized lines are truncated."""
    for lineno, line in enumerate(lines, start=1):
        if len(line) > max_length:
            print(f"[WARN] trace line {lineno} is {len(line)} chars long, truncated to {max_length}",
                  file=sys.stderr)
            line = line[:max_length]
        event = parse_line(line)
        if event is not None:
            yield event
