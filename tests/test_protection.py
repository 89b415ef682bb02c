"""Tests for protected tools and protected file-path globs."""

from __future__ import annotations

from lethe.models.config import DEFAULT_PROTECTED_FILE_PATTERNS
from lethe.protection import (
    file_path_from_parameters,
    glob_to_regex,
    is_protected_path,
    is_protected_tool,
    matches_glob,
)


class TestGlob:
    def test_double_star_slash_matches_any_depth(self) -> None:
        """`**/` matches zero or more whole directories."""
        assert matches_glob(".env", "**/.env")
        assert matches_glob("/proj/.env", "**/.env")
        assert matches_glob("a/b/c/.env", "**/.env")
        assert not matches_glob("a/b/c/.envrc", "**/.env")

    def test_star_does_not_cross_slash(self) -> None:
        assert matches_glob("main.py", "*.py")
        assert not matches_glob("src/main.py", "*.py")
        assert matches_glob("src/main.py", "src/*.py")

    def test_question_mark(self) -> None:
        assert matches_glob("file1.txt", "file?.txt")
        assert not matches_glob("file12.txt", "file?.txt")
        assert not matches_glob("file/.txt", "file?.txt")

    def test_bare_double_star(self) -> None:
        assert matches_glob("secrets/a/b/c", "secrets/**")

    def test_regex_specials_escaped(self) -> None:
        """Dots and parentheses in patterns are literal."""
        assert matches_glob("a(1).pem", "a(1).pem")
        assert not matches_glob("abpem", "a.pem")

    def test_backslashes_normalized(self) -> None:
        assert matches_glob("C:\\proj\\.env", "**/.env")

    def test_compiled_pattern_is_anchored(self) -> None:
        assert glob_to_regex("*.key").pattern.startswith("^")
        assert glob_to_regex("*.key").pattern.endswith("$")

    def test_braces_match_literally(self) -> None:
        assert matches_glob("config/{a,b}.json", "**/{a,b}.json")
        assert not matches_glob("config/a.json", "**/{a,b}.json")

    def test_empty_pattern_never_matches(self) -> None:
        assert not matches_glob("anything", "")


class TestProtection:
    def test_default_patterns(self) -> None:
        patterns = DEFAULT_PROTECTED_FILE_PATTERNS
        assert is_protected_path("/home/u/app/.env.local", patterns)
        assert is_protected_path("/etc/ssl/server.pem", patterns)
        assert not is_protected_path("/home/u/app/main.py", patterns)

    def test_missing_path_is_not_protected(self) -> None:
        assert not is_protected_path(None, ["**"])
        assert not is_protected_path("", ["**"])

    def test_file_path_parameter(self) -> None:
        assert file_path_from_parameters({"filePath": "/a.py"}) == "/a.py"
        assert file_path_from_parameters({"filePath": ""}) is None
        assert file_path_from_parameters({"path": "/a.py"}) is None
        assert file_path_from_parameters(None) is None

    def test_protected_tool(self) -> None:
        assert is_protected_tool("todowrite", ["todowrite", "task"])
        assert not is_protected_tool("read", ["todowrite", "task"])
