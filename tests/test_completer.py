"""Tests for file name completion."""

import pytest

from Core.completer import complete, list_candidates


@pytest.fixture
def files(workdir):
    for name in ["alpha.txt", "alpine.log", "beta", ".hidden", ".history"]:
        (workdir / name).write_text("")
    (workdir / "src").mkdir()
    (workdir / "src" / "main.py").write_text("")
    (workdir / "src" / "make.py").write_text("")
    return workdir


class TestCandidates:
    """Which entries are offered."""

    def test_prefix_match(self, files):
        assert list_candidates("al") == ["alpha.txt", "alpine.log"]

    def test_dotfiles_hidden_by_default(self, files):
        assert ".hidden" not in list_candidates("")

    def test_dotfiles_when_word_starts_with_dot(self, files):
        assert list_candidates(".h") == [".hidden", ".history"]

    def test_inside_a_directory(self, files):
        assert list_candidates("src/ma") == ["src/main.py", "src/make.py"]

    def test_missing_directory(self, files):
        assert list_candidates("nowhere/x") == []


class TestComplete:
    """What gets spliced into the command line."""

    def test_single_match_with_trailing_space(self, files):
        result = complete("be")
        assert result.text == "beta "
        assert result.matches == []

    def test_single_match_mid_line(self, files):
        assert complete("be", at_end=False).text == "beta"

    def test_several_matches_extend_to_common_prefix(self, files):
        result = complete("a")
        assert result.text == "alp"
        assert result.matches == ["alpha.txt", "alpine.log"]
        assert result.changed

    def test_several_matches_without_longer_prefix(self, files):
        result = complete("alp")
        assert result.text == "alp"
        assert not result.changed
        assert len(result.matches) == 2

    def test_no_match_is_a_no_op(self, files):
        result = complete("zzz")
        assert result.text == "zzz"
        assert result.matches == []
        assert not result.changed
