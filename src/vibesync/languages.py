"""Programming language detection from file-edit events.

Languages are derived only from the files a session edited, never from
message text. A log record counts as a file-edit event when it carries a
``toolUseResult`` of type create/update, a ``toolUse`` of an edit tool, or a
``tool_use`` content block of an edit tool.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import PurePosixPath
from typing import Any

# Extension (or special basename) -> language
LANGUAGE_MAPPINGS: dict[str, str] = {
    # JavaScript / TypeScript
    "js": "JavaScript",
    "jsx": "JavaScript",
    "mjs": "JavaScript",
    "cjs": "JavaScript",
    "ts": "TypeScript",
    "tsx": "TypeScript",
    "mts": "TypeScript",
    "cts": "TypeScript",
    # Python
    "py": "Python",
    "pyw": "Python",
    "pyx": "Python",
    "pyi": "Python",
    # Web
    "html": "HTML",
    "htm": "HTML",
    "xhtml": "HTML",
    "css": "CSS",
    "scss": "SCSS",
    "sass": "Sass",
    "less": "Less",
    "styl": "Stylus",
    "vue": "Vue",
    "svelte": "Svelte",
    "astro": "Astro",
    # Data formats
    "json": "JSON",
    "jsonc": "JSON",
    "json5": "JSON",
    "xml": "XML",
    "yaml": "YAML",
    "yml": "YAML",
    "toml": "TOML",
    # Docs
    "md": "Markdown",
    "mdx": "Markdown",
    "markdown": "Markdown",
    "rst": "reStructuredText",
    "txt": "Text",
    # Shell
    "sh": "Shell",
    "bash": "Bash",
    "zsh": "Zsh",
    "fish": "Fish",
    "ps1": "PowerShell",
    "psm1": "PowerShell",
    "psd1": "PowerShell",
    "bat": "Batch",
    "cmd": "Batch",
    # Systems
    "c": "C",
    "h": "C",
    "cpp": "C++",
    "cc": "C++",
    "cxx": "C++",
    "hpp": "C++",
    "hh": "C++",
    "hxx": "C++",
    "rs": "Rust",
    "go": "Go",
    "zig": "Zig",
    # JVM / .NET
    "java": "Java",
    "kt": "Kotlin",
    "kts": "Kotlin",
    "scala": "Scala",
    "sc": "Scala",
    "groovy": "Groovy",
    "gradle": "Groovy",
    "cs": "C#",
    "fs": "F#",
    "fsx": "F#",
    "vb": "Visual Basic",
    # Mobile
    "swift": "Swift",
    "m": "Objective-C",
    "mm": "Objective-C",
    "dart": "Dart",
    # Scripting
    "rb": "Ruby",
    "php": "PHP",
    "pl": "Perl",
    "pm": "Perl",
    "lua": "Lua",
    # Functional
    "hs": "Haskell",
    "lhs": "Haskell",
    "elm": "Elm",
    "clj": "Clojure",
    "cljs": "ClojureScript",
    "erl": "Erlang",
    "ex": "Elixir",
    "exs": "Elixir",
    # Data / databases
    "sql": "SQL",
    "pgsql": "PostgreSQL",
    "mysql": "MySQL",
    "r": "R",
    "rmd": "R Markdown",
    "ipynb": "Jupyter Notebook",
    "jl": "Julia",
    "mat": "MATLAB",
    # Build and infrastructure
    "dockerfile": "Docker",
    "dockerignore": "Docker",
    "makefile": "Makefile",
    "cmake": "CMake",
    "tf": "Terraform",
    "tfvars": "Terraform",
    # Other
    "graphql": "GraphQL",
    "gql": "GraphQL",
    "proto": "Protocol Buffers",
    "wasm": "WebAssembly",
    "wat": "WebAssembly",
    "vim": "Vim Script",
    "el": "Emacs Lisp",
}

EDIT_TOOLS = frozenset({"Edit", "Write", "MultiEdit", "NotebookEdit", "Create"})

_PATH_KEYS = ("file_path", "filePath", "path", "notebook_path", "filename", "file")


def language_for_extension(ext: str) -> str:
    """Map a file extension to a language name.

    Unknown extensions map to the upper-cased extension.
    """
    clean = ext[1:] if ext.startswith(".") else ext
    return LANGUAGE_MAPPINGS.get(clean.lower(), clean.upper())


def language_for_path(file_path: str) -> str | None:
    """Map a file path to a language name, or None for extensionless files."""
    pure = PurePosixPath(file_path.replace("\\", "/"))
    basename = pure.name.lower()
    if basename in LANGUAGE_MAPPINGS:
        return LANGUAGE_MAPPINGS[basename]
    ext = pure.suffix[1:]
    if not ext:
        return None
    return language_for_extension(ext)


def _path_from_params(params: Any) -> str | None:
    if not isinstance(params, dict):
        return None
    for key in _PATH_KEYS:
        value = params.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def edited_file_path(entry: dict[str, Any]) -> str | None:
    """Extract the path of the file edited by a log record, if any.

    Args:
        entry: One decoded log record.

    Returns:
        The edited file path, or None if the record is not a file-edit event.
    """
    result = entry.get("toolUseResult")
    if isinstance(result, dict) and result.get("type") in ("create", "update"):
        file_path = result.get("filePath")
        if isinstance(file_path, str) and file_path:
            return file_path

    tool_use = entry.get("toolUse")
    if isinstance(tool_use, dict) and tool_use.get("name") in EDIT_TOOLS:
        file_path = _path_from_params(tool_use.get("params") or tool_use.get("parameters"))
        if file_path:
            return file_path

    message = entry.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), list):
        for block in message["content"]:
            if (
                isinstance(block, dict)
                and block.get("type") == "tool_use"
                and block.get("name") in EDIT_TOOLS
            ):
                file_path = _path_from_params(block.get("input"))
                if file_path:
                    return file_path

    return None


def extract_languages(file_paths: Iterable[str]) -> list[str]:
    """Return the sorted, de-duplicated languages for a set of edited files."""
    languages: set[str] = set()
    for file_path in file_paths:
        language = language_for_path(file_path)
        if language:
            languages.add(language)
    return sorted(languages)
