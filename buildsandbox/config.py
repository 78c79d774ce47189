# ===============================
# Config
# ===============================

# files produced / consumed by a record-build run (relative to --outdir)
TRACE_FILE_NAME = "t.out"
COMMANDS_FILE_NAME = "commands_cache.txt"
SOURCES_FILE_NAME = "source_files.txt"
DEPENDENCY_FILE_NAME = "dependency.txt"
INDEX_CSV_NAME = "targets.csv"
GRAPHML_NAME = "dependency_graph.graphml"
SANDBOX_DIR_NAME = "sandbox"
BUILD_DESCRIPTION_NAME = "Makefile"

STRACE_PATH = "/usr/bin/strace"
# strace -s: longer strings are printed cut off, which mangles paths
STRACE_STRING_LIMIT = 4096
MAKE_PROGRAM = "make"

# compiler front ends: start a new target and make their pid "tracked"
TRACKED_COMPILERS = ("gcc", "g++")
# everything that goes in the command log
DESIRED_COMMANDS = TRACKED_COMPILERS + ("as", "ld")

# checked in this order, ".cc" must win over ".c"
SOURCE_SUFFIXES = (".cc", ".c", ".o", ".s")
HEADER_SUFFIXES = (".h", ".hh", ".hpp", ".hxx")

# opens matching any of these are never dependencies
DENYLIST_FRAGMENTS = ("locale", "/etc/", "/types/", ".cache", "/bits/", "/tmp/")
DENYLIST_PREFIXES = ("/dev/", "/proc/", "/sys/")

# dependency.txt layout
MANIFEST_WIDTH = 80
MANIFEST_INDENT = 12

# longer trace lines are truncated (with a warning)
MAX_LINE_LENGTH = 64 * 1024
