"""Unit tests for tasks.md checkbox parsing and rewriting."""

import pytest

from specky.models import FeatureProgress
from specky.tasks import (
    calculate_progress,
    count_tasks,
    find_task,
    first_incomplete,
    flatten_tasks,
    format_progress,
    parse_tasks,
    progress_bar,
    render_tasks,
    select_task,
    set_task_marker,
    toggle_task,
)


class TestParseTasks:
    """Test cases for building the task tree."""

    def test_nested_example(self):
        """Test the canonical two-root example."""
        roots = parse_tasks("- [ ] A\n  - [ ] B\n- [x] C")

        assert [task.title for task in roots] == ["A", "C"]
        assert roots[0].completed is False
        assert [child.title for child in roots[0].children] == ["B"]
        assert roots[1].completed is True
        assert roots[1].children == []

    def test_ids_and_source_lines(self):
        """Test ids are assigned in document order and lines are 1-based."""
        roots = parse_tasks("# Tasks\n\n- [ ] First\n  - [x] Second\nsome prose\n- [ ] Third")
        flat = flatten_tasks(roots)

        assert [task.task_id for task in flat] == ["task-0", "task-1", "task-2"]
        assert [task.source_line for task in flat] == [3, 4, 6]

    def test_uppercase_marker_is_completed(self):
        """Test that [X] counts as done."""
        roots = parse_tasks("- [X] Shout")
        assert roots[0].completed is True

    def test_non_matching_lines_are_ignored(self):
        """Test prose, headings and malformed checkboxes are skipped."""
        content = "## Phase 1\n-[ ] no space\n- [] empty\n* [ ] star bullet\n- [ ] Real task"
        roots = parse_tasks(content)

        assert [task.title for task in roots] == ["Real task"]

    def test_title_is_trimmed(self):
        """Test trailing whitespace is dropped from titles."""
        roots = parse_tasks("- [ ] Padded   ")
        assert roots[0].title == "Padded"

    def test_deeper_nesting(self):
        """Test three levels of nesting."""
        roots = parse_tasks("- [ ] A\n  - [ ] B\n    - [ ] C\n  - [ ] D")

        a = roots[0]
        assert [child.title for child in a.children] == ["B", "D"]
        assert [child.title for child in a.children[0].children] == ["C"]

    def test_skipped_level_attaches_to_nearest_ancestor(self):
        """Test an indentation jump attaches to the closest shallower task."""
        roots = parse_tasks("- [ ] A\n      - [ ] deep")

        assert len(roots) == 1
        assert [child.title for child in roots[0].children] == ["deep"]

    def test_indented_first_line_becomes_root(self):
        """Test an orphaned indented task falls back to a root."""
        roots = parse_tasks("  - [ ] orphan\n- [ ] A")

        assert [task.title for task in roots] == ["orphan", "A"]

    def test_stale_parents_are_discarded(self):
        """Test a new root resets the stack."""
        roots = parse_tasks("- [ ] A\n  - [ ] B\n    - [ ] C\n- [ ] D\n    - [ ] E")

        d = roots[1]
        assert d.title == "D"
        assert [child.title for child in d.children] == ["E"]
        assert [child.title for child in roots[0].children[0].children] == ["C"]

    def test_empty_content(self):
        """Test that no lines means no tasks."""
        assert parse_tasks("") == []


class TestCounting:
    """Test cases for completion counting and progress."""

    def test_counts_whole_tree(self):
        """Test counting includes nested tasks."""
        roots = parse_tasks("- [ ] A\n  - [ ] B\n- [x] C")
        assert count_tasks(roots) == (3, 1)

    def test_progress_rounds(self):
        """Test percentage rounding for 1 of 3."""
        progress = calculate_progress(parse_tasks("- [ ] A\n  - [ ] B\n- [x] C"))
        assert progress.total_tasks == 3
        assert progress.completed_tasks == 1
        assert progress.percentage == 33

    @pytest.mark.parametrize("total,completed,expected", [
        (8, 1, 13),
        (8, 3, 38),
        (8, 5, 63),
        (200, 1, 1),
        (3, 2, 67),
    ])
    def test_progress_rounds_halves_up(self, total, completed, expected):
        """Test exact halves round up rather than to even."""
        content = "- [x] done\n" * completed + "- [ ] open\n" * (total - completed)
        assert calculate_progress(parse_tasks(content)).percentage == expected
        assert FeatureProgress.from_counts(total, completed).percentage == expected

    def test_progress_bar_rounds_halves_up(self):
        """Test half-filled cells round up."""
        assert progress_bar(25) == "[███░░░░░░░]"
        assert progress_bar(15) == "[██░░░░░░░░]"
        assert progress_bar(44) == "[████░░░░░░]"

    def test_progress_without_tasks(self):
        """Test zero tasks reports zero percent."""
        progress = calculate_progress([])
        assert progress.percentage == 0
        assert progress.total_tasks == 0

    def test_format_progress(self):
        """Test the progress bar display."""
        assert format_progress(FeatureProgress.from_counts(10, 5)) == "[█████░░░░░] 5/10 (50%)"

    def test_format_progress_no_tasks(self):
        """Test the display when there is nothing to count."""
        assert format_progress(FeatureProgress()) == "No tasks defined"

    def test_progress_bar_bounds(self):
        """Test empty and full bars."""
        assert progress_bar(0) == "[░░░░░░░░░░]"
        assert progress_bar(100) == "[██████████]"


class TestSelection:
    """Test cases for locating tasks."""

    CONTENT = "- [x] A\n  - [ ] B\n  - [x] C\n- [ ] D"

    def test_select_by_preorder_index(self):
        """Test 1-based selection walks parents before children."""
        roots = parse_tasks(self.CONTENT)

        assert select_task(roots, 1).title == "A"
        assert select_task(roots, 2).title == "B"
        assert select_task(roots, 4).title == "D"

    def test_select_out_of_range(self):
        """Test invalid indexes select nothing."""
        roots = parse_tasks(self.CONTENT)

        assert select_task(roots, 0) is None
        assert select_task(roots, 5) is None

    def test_first_incomplete(self):
        """Test the next task is the first open one in pre-order."""
        roots = parse_tasks(self.CONTENT)
        assert first_incomplete(roots).title == "B"

    def test_first_incomplete_when_done(self):
        """Test no next task once everything is checked."""
        assert first_incomplete(parse_tasks("- [x] A\n- [x] B")) is None

    def test_find_task(self):
        """Test lookup by id."""
        roots = parse_tasks(self.CONTENT)

        assert find_task(roots, "task-2").title == "C"
        assert find_task(roots, "task-9") is None


class TestToggle:
    """Test cases for rewriting checkbox markers."""

    def test_toggle_rewrites_only_one_line(self):
        """Test toggling task-1 on line 3 leaves every other line intact."""
        content = "# Tasks\n- [ ] A\n  - [ ] B\n- [x] C\n"
        updated, task = toggle_task(content, "task-1")

        assert task.source_line == 3
        before = content.split("\n")
        after = updated.split("\n")
        assert after[2] == "  - [x] B"
        assert [line for i, line in enumerate(after) if i != 2] == [line for i, line in enumerate(before) if i != 2]

    def test_toggle_completed_to_open(self):
        """Test an uppercase X flips back to open."""
        updated, _ = toggle_task("- [X] Done", "task-0")
        assert updated == "- [ ] Done"

    def test_toggle_unknown_task(self):
        """Test unknown ids raise KeyError."""
        with pytest.raises(KeyError):
            toggle_task("- [ ] A", "task-7")

    def test_set_marker_is_idempotent(self):
        """Test setting an already-set state returns the same text."""
        content = "- [x] A"
        task = parse_tasks(content)[0]

        assert set_task_marker(content, task, completed=True) is content

    def test_set_marker_verifies_line(self):
        """Test a stale task pointing at a non-task line is refused."""
        task = parse_tasks("- [ ] A")[0]

        with pytest.raises(ValueError):
            set_task_marker("just prose now", task, completed=True)

    def test_brackets_in_title_untouched(self):
        """Test only the checkbox marker changes when the title has brackets."""
        updated, _ = toggle_task("- [ ] Handle [ ] in titles", "task-0")
        assert updated == "- [x] Handle [ ] in titles"

    def test_crlf_lines_keep_their_endings(self):
        """Test carriage returns survive a toggle."""
        updated, _ = toggle_task("- [ ] A\r\n- [ ] B\r\n", "task-0")
        assert updated == "- [x] A\r\n- [ ] B\r\n"


class TestRender:
    """Test cases for rendering trees back to text."""

    def test_render_round_trip(self):
        """Test render then parse keeps shape and flags."""
        content = "- [ ] A\n  - [x] B\n    - [ ] C\n- [x] D"
        roots = parse_tasks(content)

        assert render_tasks(roots) == content
