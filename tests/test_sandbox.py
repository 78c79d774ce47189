"""Tests for the sandbox materializer."""

import pytest

from buildsandbox.graph_builder import Target
from buildsandbox.sandbox import (
    SandboxMaterializer,
    make_ancestor_dirs,
    make_escape,
    rewrite_command,
    sandbox_relpath,
)


def make_target(name, command, deps, directory=None):
    t = Target(name, command, directory=str(directory) if directory else None)
    for d in deps:
        t.add_dependency(d)
    return t.finalize()


class TestPaths:

    @pytest.mark.parametrize("dep,expected", [
        ("util.h", "util.h"),
        ("include/util.h", "include/util.h"),
        ("./util.h", "util.h"),
        ("/usr/include/stdio.h", "usr/include/stdio.h"),
        ("../lib/y.h", "lib/y.h"),
        ("../../z.h", "z.h"),
    ])
    def test_sandbox_relpath(self, dep, expected):
        assert sandbox_relpath(dep) == expected

    def test_make_ancestor_dirs(self, tmp_path):
        made = make_ancestor_dirs(tmp_path / "sb", "a/b/c")
        assert made == tmp_path / "sb" / "a" / "b" / "c"
        assert made.is_dir()

    def test_make_ancestor_dirs_is_idempotent(self, tmp_path):
        make_ancestor_dirs(tmp_path, "a/b")
        (tmp_path / "a" / "keep.txt").write_text("x")
        make_ancestor_dirs(tmp_path, "a/b/d")
        assert (tmp_path / "a" / "keep.txt").read_text() == "x"
        assert (tmp_path / "a" / "b" / "d").is_dir()

    def test_rewrite_command(self):
        assert rewrite_command("gcc -o prog main.c", "/sb") == "gcc -I/sb -o prog main.c"
        assert rewrite_command("gcc", "/sb") == "gcc -I/sb"

    def test_make_escape(self):
        assert make_escape("-Wl,-rpath,$ORIGIN/lib") == "-Wl,-rpath,$$ORIGIN/lib"
        assert make_escape("plain") == "plain"


class TestMaterialize:

    def test_copies_are_byte_identical(self, source_tree, tmp_path):
        sandbox = SandboxMaterializer(tmp_path / "sandbox")
        target = make_target("prog", "gcc -o prog main.o", ["main.o", "main.c"], source_tree)
        assert sandbox.materialize(target) == []
        for name in ("main.o", "main.c"):
            assert (sandbox.root / name).read_bytes() == (source_tree / name).read_bytes()

    def test_absolute_dependency_rooted_in_sandbox(self, tmp_path):
        inc = tmp_path / "abs" / "inc"
        inc.mkdir(parents=True)
        header = inc / "x.h"
        header.write_text("#define X 1\n")
        sandbox = SandboxMaterializer(tmp_path / "sandbox")
        sandbox.materialize(make_target("a.o", "gcc -c a.c -o a.o", [str(header)]))
        copy = sandbox.root / sandbox_relpath(str(header))
        assert copy.read_text() == "#define X 1\n"

    def test_relative_dependency_uses_source_root(self, source_tree, tmp_path):
        sandbox = SandboxMaterializer(tmp_path / "sandbox", source_root=source_tree)
        sandbox.materialize(make_target("prog", "gcc -o prog main.c", ["util.h"]))
        assert (sandbox.root / "util.h").exists()

    def test_missing_dependency_is_reported_and_skipped(self, source_tree, tmp_path, capsys):
        sandbox = SandboxMaterializer(tmp_path / "sandbox")
        target = make_target("prog", "gcc -o prog main.c", ["nope.h", "util.h"], source_tree)
        failures = sandbox.materialize(target)
        assert [f.dependency for f in failures] == ["nope.h"]
        assert (sandbox.root / "util.h").exists()
        assert "[WARN]" in capsys.readouterr().err

    def test_unwritable_copy_is_reported_and_skipped(self, source_tree, tmp_path, capsys):
        """A file sitting where a sandbox directory should go fails only that copy."""
        (source_tree / "sub").mkdir()
        (source_tree / "sub" / "x.h").write_text("#define X 1\n")
        sandbox = SandboxMaterializer(tmp_path / "sandbox")
        (sandbox.root / "sub").write_text("in the way")
        target = make_target("prog", "gcc -o prog main.c", ["sub/x.h", "util.h"], source_tree)
        failures = sandbox.materialize(target)
        assert [f.dependency for f in failures] == ["sub/x.h"]
        assert (sandbox.root / "util.h").read_text() == "#define UTIL 0\n"
        assert "could not be written" in capsys.readouterr().err


class TestBuildDescription:

    def test_rules_and_umbrella(self, source_tree, tmp_path):
        sandbox = SandboxMaterializer(tmp_path / "sandbox")
        sandbox.materialize(make_target("main.o", "gcc -c main.c -o main.o", ["main.c", "util.h"], source_tree))
        sandbox.materialize(make_target("prog", "gcc -o prog main.o", ["main.o"], source_tree))
        root = sandbox.root
        assert sandbox.build_description() == (
            f"main.o: main.c\n\tgcc -I{root} -c main.c -o main.o\n"
            "\n"
            f"prog: main.o\n\tgcc -I{root} -o prog main.o\n"
            "\n"
            "all: main.o prog\n"
        )

    def test_dollar_signs_are_escaped(self, source_tree, tmp_path):
        """make would expand $ORIGIN as $O followed by RIGIN."""
        sandbox = SandboxMaterializer(tmp_path / "sandbox")
        sandbox.materialize(make_target("prog", "gcc -o prog main.o -Wl,-rpath,$ORIGIN/lib",
                                        ["main.o"], source_tree))
        text = sandbox.build_description()
        assert "-Wl,-rpath,$$ORIGIN/lib" in text
        assert "RIGIN/lib" not in text.replace("$$ORIGIN/lib", "")

    def test_write_build_description(self, tmp_path):
        sandbox = SandboxMaterializer(tmp_path / "sandbox")
        sandbox.materialize(make_target("prog", "gcc -o prog main.c", []))
        path = sandbox.write_build_description()
        assert path == sandbox.root / "Makefile"
        assert path.read_text().startswith("prog:\n\tgcc -I")

    def test_unwritable_build_description_is_not_fatal(self, tmp_path, capsys):
        sandbox = SandboxMaterializer(tmp_path / "sandbox")
        (sandbox.root / "Makefile").mkdir()
        assert sandbox.write_build_description() is None
        assert "[WARN]" in capsys.readouterr().err
