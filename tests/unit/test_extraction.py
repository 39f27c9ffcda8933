"""Unit tests for pulling changes, commands and path tokens out of generated text."""

from specky.extraction import (
    extract_changes,
    extract_path_tokens,
    extract_shell_commands,
    scan_fenced_blocks,
)


GENERATED = """Here is the implementation.

#### `src/auth.ts` (new)
```ts
export function login() {
  return true;
}
```

### `README.md`
```markdown
# Auth
```

Run these:

```bash
$ npm install
npm test
```
"""


class TestScanFencedBlocks:
    """Test cases for the fence tokenizer."""

    def test_blocks_and_languages(self):
        """Test every closed block is found with its info string."""
        blocks = scan_fenced_blocks(GENERATED)

        assert [block.language for block in blocks] == ["ts", "markdown", "bash"]
        assert blocks[0].content == "export function login() {\n  return true;\n}"

    def test_unclosed_fence_is_dropped(self):
        """Test a trailing fence without a closer yields nothing."""
        blocks = scan_fenced_blocks("```python\nprint(1)\n")
        assert blocks == []

    def test_longer_fence_contains_shorter(self):
        """Test a four-backtick block can hold a three-backtick one."""
        text = "````markdown\n```bash\nls\n```\n````"
        blocks = scan_fenced_blocks(text)

        assert len(blocks) == 1
        assert blocks[0].content == "```bash\nls\n```"

    def test_tilde_fence(self):
        """Test tilde fences are recognized."""
        blocks = scan_fenced_blocks("~~~sh\necho hi\n~~~")
        assert blocks[0].language == "sh"
        assert blocks[0].content == "echo hi"


class TestExtractChanges:
    """Test cases for change block extraction."""

    def test_labeled_blocks(self):
        """Test headings with back-ticked paths become changes in order."""
        changes = extract_changes(GENERATED)

        assert [change.path for change in changes] == ["src/auth.ts", "README.md"]
        assert changes[1].content == "# Auth"

    def test_blank_line_between_heading_and_fence(self):
        """Test the heading must sit directly above the fence."""
        text = "#### `src/a.ts`\n\n```ts\nconst a = 1;\n```"
        assert extract_changes(text) == []

    def test_heading_without_backticks_is_ignored(self):
        """Test a plain heading is not a change label."""
        text = "#### src/a.ts\n```ts\nconst a = 1;\n```"
        assert extract_changes(text) == []

    def test_plain_prose_yields_nothing(self):
        """Test text without blocks is a valid empty result."""
        assert extract_changes("No code this time.") == []

    def test_crlf_output(self):
        """Test Windows line endings in generated text."""
        text = "## `a.py`\r\n```python\r\nx = 1\r\n```\r\n"
        changes = extract_changes(text)

        assert len(changes) == 1
        assert changes[0].path == "a.py"
        assert changes[0].content == "x = 1"

    def test_untrusted_paths_are_kept_verbatim(self):
        """Test extraction does not judge paths."""
        changes = extract_changes("#### `../../etc/passwd`\n```\nroot\n```")
        assert changes[0].path == "../../etc/passwd"


class TestExtractShellCommands:
    """Test cases for suggested shell commands."""

    def test_prompts_stripped_and_duplicates_dropped(self):
        """Test prompt characters, comments and repeats."""
        text = (
            "```bash\n$ npm install\n# comment\n\nnpm test\nnpm install\n```\n"
            "```sh\n> make build\n```\n"
            "```python\nprint(1)\n```"
        )
        assert extract_shell_commands(text) == ["npm install", "npm test", "make build"]

    def test_change_blocks_are_not_commands(self):
        """Test a labeled shell script is a file change, not a command."""
        text = "#### `scripts/setup.sh`\n```bash\nrm -rf build\n```"
        assert extract_shell_commands(text) == []

    def test_limit(self):
        """Test the command cap."""
        body = "\n".join(f"echo {i}" for i in range(15))
        commands = extract_shell_commands(f"```shell\n{body}\n```", limit=10)

        assert len(commands) == 10
        assert commands[0] == "echo 0"
        assert commands[-1] == "echo 9"

    def test_console_language(self):
        """Test console-tagged blocks count as shell."""
        assert extract_shell_commands("```console\n$ pytest -q\n```") == ["pytest -q"]

    def test_from_generated_text(self):
        """Test the full sample."""
        assert extract_shell_commands(GENERATED) == ["npm install", "npm test"]


class TestExtractPathTokens:
    """Test cases for path-shaped tokens in task titles."""

    def test_backticked_and_bare_tokens(self):
        """Test punctuation around tokens is trimmed."""
        tokens = extract_path_tokens("Update `src/app.ts` and README.md, then tests/test_x.py.")
        assert tokens == ["src/app.ts", "README.md", "tests/test_x.py"]

    def test_unknown_extensions_ignored(self):
        """Test only known source extensions qualify."""
        assert extract_path_tokens("Bump v1.2 and edit notes.txt") == []

    def test_duplicates_and_limit(self):
        """Test de-duplication and the token cap."""
        title = "a.py a.py b.py c.py d.py e.py f.py"
        assert extract_path_tokens(title, limit=3) == ["a.py", "b.py", "c.py"]

    def test_custom_extensions(self):
        """Test narrowing the extension set."""
        assert extract_path_tokens("see main.go and app.py", extensions=("go",)) == ["main.go"]
