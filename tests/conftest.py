"""Shared fixtures: a small strace -f log of `make` building main.o and prog."""

import pytest

from buildsandbox.trace_parser import iter_events

BUILD_TRACE = """\
100 execve("/usr/bin/make", ["make"], 0x7ffc2a1b /* 40 vars */) = 0
100 openat(AT_FDCWD, "/etc/ld.so.cache", O_RDONLY|O_CLOEXEC) = 3
100 openat(AT_FDCWD, "Makefile", O_RDONLY) = 3
100 vfork( <unfinished ...>
101 execve("/usr/local/bin/gcc", ["gcc", "-c", "main.c", "-o", "main.o"], 0x55d0 /* 40 vars */) = -1 ENOENT (No such file or directory)
101 execve("/usr/bin/gcc", ["gcc", "-c", "main.c", "-o", "main.o"], 0x55d0 /* 40 vars */) = 0
100 <... vfork resumed>) = 101
101 openat(AT_FDCWD, "/usr/lib/locale/locale-archive", O_RDONLY|O_CLOEXEC) = 3
101 vfork( <unfinished ...>
102 execve("/usr/lib/gcc/x86_64-linux-gnu/12/cc1", ["/usr/lib/gcc/x86_64-linux-gnu/12/cc1", "-quiet", "main.c", "-o", "/tmp/ccA.s"], 0x1 /* 45 vars */) = 0
101 <... vfork resumed>) = 102
102 openat(AT_FDCWD, "main.c", O_RDONLY|O_NOCTTY) = 3
102 openat(AT_FDCWD, "util.h", O_RDONLY|O_NOCTTY) = 4
102 openat(AT_FDCWD, "/usr/include/stdio.h", O_RDONLY|O_NOCTTY) = 4
102 openat(AT_FDCWD, "/usr/include/x86_64-linux-gnu/bits/types.h", O_RDONLY|O_NOCTTY) = 4
102 openat(AT_FDCWD, "missing.h", O_RDONLY|O_NOCTTY) = -1 ENOENT (No such file or directory)
102 openat(AT_FDCWD, "/tmp/ccA.s", O_RDWR|O_CREAT|O_TRUNC, 0666) = 3
102 +++ exited with 0 +++
101 +++ exited with 0 +++
100 vfork( <unfinished ...>
103 execve("/usr/bin/gcc", ["gcc", "-o", "prog", "main.o"], 0x55d0 /* 40 vars */) = 0
100 <... vfork resumed>) = 103
103 openat(AT_FDCWD, "main.o", O_RDONLY) = 3
103 vfork( <unfinished ...>
104 execve("/usr/bin/ld", ["ld", "-o", "prog", "/usr/lib/crt1.o", "main.o"], 0x2 /* 41 vars */) = 0
103 <... vfork resumed>) = 104
104 openat(AT_FDCWD, "/usr/lib/x86_64-linux-gnu/libc.so.6", O_RDONLY|O_CLOEXEC) = 3
104 openat(AT_FDCWD, "prog", O_RDWR|O_CREAT|O_TRUNC, 0777) = 3
104 +++ exited with 0 +++
103 +++ exited with 0 +++
100 +++ exited with 0 +++
"""


@pytest.fixture
def build_trace():
    """Raw text of the sample trace."""
    return BUILD_TRACE


@pytest.fixture
def build_events():
    """Events parsed from the sample trace."""
    return list(iter_events(BUILD_TRACE.splitlines(keepends=True)))


@pytest.fixture
def source_tree(tmp_path):
    """Source directory holding the files the sample build reads."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "main.c").write_text('#include "util.h"\nint main(void) { return UTIL; }\n')
    (src / "util.h").write_text("#define UTIL 0\n")
    (src / "main.o").write_bytes(b"\x7fELF\x02\x01\x01\x00" + bytes(range(256)))
    return src
