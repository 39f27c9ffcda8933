"""Unit tests for merge strategy selection and the declaration splicer."""

from specky.merge import (
    choose_strategy,
    find_declaration_name,
    has_complete_file_markers,
    locate_declaration,
    plan_merge,
)


EXISTING_TS = "function a() {\n  return 1;\n}\n\nfunction b() {\n  return 2;\n}\n"


class TestChooseStrategy:
    """Test cases for choose_strategy."""

    def test_large_proposal_replaces(self):
        """Test content above the size ratio replaces the file."""
        strategy, _ = choose_strategy("src/x.ts", "const a = 1;", "const a = 1;\nconst b = 2;\n")
        assert strategy == "replace"

    def test_structured_files_replace(self):
        """Test config and markup always replace."""
        strategy, reason = choose_strategy("package.json", '{"a": 1, "b": 2, "c": 3}', '{"a": 2}')
        assert strategy == "replace"
        assert reason == "structured or markup file"

    def test_complete_file_markers_replace(self):
        """Test import-led snippets are treated as whole files."""
        existing = EXISTING_TS * 4
        strategy, reason = choose_strategy("src/x.ts", existing, "import x from 'y';\nconst a = 1;")
        assert strategy == "replace"
        assert reason == "proposed content looks like a complete file"

    def test_small_declaration_merges(self):
        """Test a small declaration edit goes to the merger."""
        strategy, _ = choose_strategy("src/x.ts", EXISTING_TS, "function b() {\n  return 3;\n}")
        assert strategy == "merge"


class TestDeclarations:
    """Test cases for declaration detection."""

    def test_find_declaration_name(self):
        """Test several declaration shapes."""
        assert find_declaration_name("export default async function handler() {}") == "handler"
        assert find_declaration_name("pub fn run() {}") == "run"
        assert find_declaration_name("// note\ndef build(x):\n    pass") == "build"
        assert find_declaration_name("export class Service {}") == "Service"
        assert find_declaration_name("console.log(1);") is None

    def test_markers(self):
        """Test complete-file markers."""
        assert has_complete_file_markers("from os import path\n")
        assert has_complete_file_markers("#include <stdio.h>")
        assert has_complete_file_markers("const fs = require('fs');")
        assert not has_complete_file_markers("importantValue = 1")

    def test_docstrings(self):
        """Test only a module docstring marks a complete file."""
        assert has_complete_file_markers('"""Module docs."""\nX = 1\n')
        assert not has_complete_file_markers('def b():\n    """Return three."""\n    return 3')

    def test_locate_stops_at_next_declaration(self):
        """Test the range ends before the next top-level declaration."""
        assert locate_declaration(EXISTING_TS, "a") == (0, 3)
        assert locate_declaration(EXISTING_TS, "b") == (4, 7)
        assert locate_declaration(EXISTING_TS, "zzz") is None

    def test_locate_stops_at_decorator(self):
        """Test decorators count as boundaries."""
        existing = "def a():\n    return 1\n\n@decorator\ndef b():\n    pass\n"
        assert locate_declaration(existing, "a") == (0, 2)
        assert locate_declaration(existing, "b") == (3, 6)
        assert locate_declaration(existing, "b", include_decorators=False) == (4, 6)


class TestPlanMerge:
    """Test cases for plan_merge."""

    def test_new_file_is_created(self):
        """Test a missing file is a creation."""
        decision = plan_merge("src/new.ts", None, "export const x = 1;")

        assert decision.strategy == "create"
        assert decision.content == "export const x = 1;"

    def test_splice_replaces_only_the_declaration(self):
        """Test the matching function is swapped and the rest kept."""
        decision = plan_merge("src/x.ts", EXISTING_TS, "function b() {\n  return 3;\n}")

        assert decision.strategy == "splice"
        assert decision.declaration == "b"
        assert (decision.start_line, decision.end_line) == (4, 7)
        assert decision.content == "function a() {\n  return 1;\n}\n\nfunction b() {\n  return 3;\n}\n"

    def test_unknown_declaration_is_appended(self):
        """Test a new declaration lands at the end of the file."""
        decision = plan_merge("src/x.ts", EXISTING_TS, "function c() {\n  return 3;\n}")

        assert decision.strategy == "append"
        assert decision.content == EXISTING_TS.rstrip("\n") + "\n\nfunction c() {\n  return 3;\n}\n"

    def test_no_declaration_replaces(self):
        """Test ambiguous snippets fall back to full replacement."""
        decision = plan_merge("src/x.ts", EXISTING_TS * 3, "console.log(1);")

        assert decision.strategy == "replace"
        assert decision.content == "console.log(1);"

    def test_ratio_is_configurable(self):
        """Test a low ratio forces replacement."""
        decision = plan_merge("src/x.ts", EXISTING_TS, "function b() {\n  return 3;\n}", replace_ratio=0.1)
        assert decision.strategy == "replace"


DECORATED_PY = '''import app


@app.get('/a')
def handler():
    return 1


def other():
    return 2


def third():
    return 3
'''


class TestDecoratedSplice:
    """Test cases for splicing decorated declarations."""

    def test_decorated_proposal_replaces_decorators(self):
        """Test the decorator is swapped along with the function, not duplicated."""
        decision = plan_merge("src/routes.py", DECORATED_PY, "@app.get('/a')\ndef handler():\n    return 42")

        assert decision.strategy == "splice"
        assert decision.content.count("@app.get('/a')") == 1
        assert "@app.get('/a')\ndef handler():\n    return 42\n\n\ndef other():" in decision.content

    def test_bare_proposal_keeps_existing_decorators(self):
        """Test a proposal without decorators leaves the existing ones in place."""
        decision = plan_merge("src/routes.py", DECORATED_PY, "def handler():\n    return 42")

        assert decision.strategy == "splice"
        assert "@app.get('/a')\ndef handler():\n    return 42\n" in decision.content

    def test_documented_function_is_spliced(self):
        """Test a function docstring does not force full replacement."""
        decision = plan_merge("src/routes.py", DECORATED_PY, 'def other():\n    """Two."""\n    return 22')

        assert decision.strategy == "splice"
        assert "def third():" in decision.content
        assert "@app.get('/a')" in decision.content
