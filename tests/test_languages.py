"""Tests for language detection."""

from vibesync.languages import (
    edited_file_path,
    extract_languages,
    language_for_extension,
    language_for_path,
)


def test_known_extensions():
    assert language_for_extension("py") == "Python"
    assert language_for_extension(".tsx") == "TypeScript"
    assert language_for_extension("RS") == "Rust"


def test_unknown_extension_is_uppercased():
    assert language_for_extension("zig2") == "ZIG2"


def test_special_basenames():
    assert language_for_path("/repo/Dockerfile") == "Docker"
    assert language_for_path("Makefile") == "Makefile"


def test_extensionless_file_has_no_language():
    assert language_for_path("/usr/bin/tool") is None


def test_windows_paths():
    assert language_for_path("C:\\code\\api\\server.go") == "Go"


def test_extract_languages_sorted_and_unique():
    files = ["a.py", "b.py", "README.md", "run.sh", "bin/tool"]
    assert extract_languages(files) == ["Markdown", "Python", "Shell"]


class TestEditedFilePath:
    def test_tool_use_result(self):
        entry = {"toolUseResult": {"type": "update", "filePath": "/x/a.py"}}
        assert edited_file_path(entry) == "/x/a.py"

    def test_tool_use_result_read_is_ignored(self):
        entry = {"toolUseResult": {"type": "text", "filePath": "/x/a.py"}}
        assert edited_file_path(entry) is None

    def test_top_level_tool_use(self):
        entry = {"toolUse": {"name": "MultiEdit", "params": {"path": "/x/b.ts"}}}
        assert edited_file_path(entry) == "/x/b.ts"

    def test_content_block(self):
        entry = {
            "message": {
                "content": [
                    {"type": "text", "text": "editing"},
                    {"type": "tool_use", "name": "Edit", "input": {"file_path": "/x/c.rs"}},
                ]
            }
        }
        assert edited_file_path(entry) == "/x/c.rs"

    def test_non_edit_tool(self):
        entry = {"message": {"content": [{"type": "tool_use", "name": "Bash", "input": {"command": "ls"}}]}}
        assert edited_file_path(entry) is None
