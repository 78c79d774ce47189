#!/usr/bin/env python3
"""
record_build.py

Records a make build under strace and reconstructs, for every gcc/g++
invocation, the files it really depended on. Produces:

    commands_cache.txt   compiler/assembler/linker command lines
    source_files.txt     absolute paths of the compiled sources
    dependency.txt       TARGET / COMMAND / DEPENDENCY blocks
    sandbox/             copies of all dependencies + a Makefile

Usage:
    record-build [make targets...]
    record-build --no-run --trace t.out --outdir out/
"""
import argparse
import os
import sys
from contextlib import ExitStack
from pathlib import Path

from tqdm import tqdm

from buildsandbox import config
from buildsandbox.graph_builder import DependencyGraphBuilder
from buildsandbox.manifest import ManifestWriter, write_command_log, write_source_list, write_target_index
from buildsandbox.registry import ProcessRegistry
from buildsandbox.sandbox import SandboxMaterializer
from buildsandbox.trace_parser import iter_events
from buildsandbox.tracing import make_command, run_strace


class FatalError(RuntimeError):
    pass


def open_or_fail(stack: ExitStack, path, mode: str, what: str):
    try:
        return stack.enter_context(open(path, mode, errors="replace" if "r" in mode else None))
    except OSError as e:
        raise FatalError(f"{what}, {path}, could not be opened! ({e})") from e


def process_trace(trace_path, outdir, sandbox_dir, source_root=None,
                  graphml_path=None, index_csv_path=None, quiet=False):
    """
    Parse a finished trace and write every report plus the sandbox.

    Args:
        trace_path: strace -f output of a finished build.
        outdir: directory for the command log, source list and dependency.txt.
        sandbox_dir: root of the sandbox tree (created if missing).
        source_root: directory the build ran in; relative paths resolve
            against it. Defaults to the current directory.
        graphml_path: where to save the networkx graph, None to skip.
        index_csv_path: where to save the per-target CSV index, None to skip.
        quiet (bool): hide the progress bar.

    Returns:
        DependencyGraph: every finalized target, in finalization order.

    Raises:
        FatalError: the trace or one of the text outputs cannot be opened.
    """
    outdir = Path(outdir)
    with ExitStack() as stack:
        trace = open_or_fail(stack, trace_path, "r", "input file to be parsed")
        cmds_file = open_or_fail(stack, outdir / config.COMMANDS_FILE_NAME, "w",
                                 "file to write list of commands to")
        sources_file = open_or_fail(stack, outdir / config.SOURCES_FILE_NAME, "w",
                                    "file to write source file names to")
        dep_file = open_or_fail(stack, outdir / config.DEPENDENCY_FILE_NAME, "w",
                                "file to write dependencies to")

        registry = ProcessRegistry(initial_cwd=str(source_root or os.getcwd()))
        builder = DependencyGraphBuilder(registry)
        manifest = ManifestWriter(dep_file)
        sandbox = SandboxMaterializer(sandbox_dir, source_root=source_root)
        failures = []

        def emit(target):
            manifest.write(target)
            failures.extend(sandbox.materialize(target))

        for event in iter_events(tqdm(trace, desc="trace lines", disable=quiet)):
            target = builder.apply(event)
            if target is not None:
                emit(target)
        last = builder.finish()
        if last is not None:
            emit(last)

        graph = builder.graph
        write_command_log(cmds_file, graph.commands)
        write_source_list(sources_file, graph.sources)

    makefile = sandbox.write_build_description()
    if not quiet:
        print(f"[OK] {len(graph)} targets, {len(graph.commands)} commands, "
              f"{len(failures)} dependencies not copied")
        if makefile is not None:
            print(f"[OK] Sandbox build file -> {makefile}")

    if index_csv_path:
        write_target_index(graph.targets, index_csv_path)
        if not quiet:
            print(f"[OK] Target index -> {index_csv_path}")
    if graphml_path:
        gpath, jpath = graph.save(graphml_path)
        if not quiet:
            print(f"[OK] Dependency graph -> {gpath}, {jpath}")
    return graph


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Trace a make build and rebuild its true dependency set in a sandbox")
    p.add_argument("targets", nargs="*", help="make targets to build")
    p.add_argument("--outdir", default=".", help="directory for the reports (default: .)")
    p.add_argument("--trace", default=None, help=f"trace file (default: OUTDIR/{config.TRACE_FILE_NAME})")
    p.add_argument("--sandbox", default=None, help=f"sandbox directory (default: OUTDIR/{config.SANDBOX_DIR_NAME})")
    p.add_argument("--source-root", default=None, help="directory the build ran in (default: cwd)")
    p.add_argument("--no-run", action="store_true", help="do not run the build, parse an existing trace")
    p.add_argument("--strace", default=config.STRACE_PATH, help="strace executable")
    p.add_argument("--make", default=config.MAKE_PROGRAM, help="make program")
    p.add_argument("--graphml", action="store_true", help="also save the dependency graph (GraphML + JSON)")
    p.add_argument("--index-csv", action="store_true", help="also save a CSV index of targets")
    p.add_argument("--quiet", "-q", action="store_true", help="no progress output")
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    outdir = Path(args.outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    trace_path = Path(args.trace) if args.trace else outdir / config.TRACE_FILE_NAME
    sandbox_dir = Path(args.sandbox) if args.sandbox else outdir / config.SANDBOX_DIR_NAME

    try:
        if not args.no_run:
            rc = run_strace(make_command(args.targets, args.make), trace_path, args.strace)
            if rc != 0:
                print(f"[WARN] traced build exited with status {rc}", file=sys.stderr)
        process_trace(
            trace_path,
            outdir,
            sandbox_dir,
            source_root=args.source_root,
            graphml_path=outdir / config.GRAPHML_NAME if args.graphml else None,
            index_csv_path=outdir / config.INDEX_CSV_NAME if args.index_csv else None,
            quiet=args.quiet,
        )
    except (FatalError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
