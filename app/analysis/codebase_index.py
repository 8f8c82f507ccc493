"""Incremental lexical index of the files the agent has touched.

The index keeps, per file path, the language, import specifiers, exported
names, top-level functions and classes.  Extraction is delegated to a
``StaticAnalyzer``; the default ``RegexAnalyzer`` works on regular
expressions only and is an approximation.  A real parser can be plugged in
per language without touching the callers.

Public API
----------
``CodebaseIndexer(analyzer=None)``
    ``index_file(path, content)`` : (re)index one file
    ``remove_file(path)``         : drop an entry
    ``summary_for_prompt()``      : bounded text block for prompts
    ``extract_patterns(files)``   : learnings payload for a finished task
    ``describe_changes(files)``   : new / modified / deleted paths
    ``load(data)`` / ``to_dict()``: round-trip through ``AgentMemory``
"""

from __future__ import annotations

import re
from collections import Counter
from pathlib import PurePosixPath
from typing import Any, Iterable, Protocol

from app.core.logging import get_logger
from app.core.models import IndexedFile, utc_now_iso

logger = get_logger("analysis.codebase_index")

_LANGUAGE_BY_EXT = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".json": "json",
    ".md": "markdown",
    ".css": "css",
    ".scss": "scss",
    ".html": "html",
}

_JS_LANGUAGES = {"typescript", "javascript"}

# JS/TS patterns
_JS_IMPORT_RE = re.compile(
    r"""(?:require\s*\(\s*['"`]([^'"`]+)['"`]\s*\)|"""
    r"""import\s+[^'"`;]*?\s*from\s+['"`]([^'"`]+)['"`]|"""
    r"""import\s+['"`]([^'"`]+)['"`]|"""
    r"""import\s*\(\s*['"`]([^'"`]+)['"`]\s*\))""",
    re.MULTILINE,
)
_JS_EXPORT_RE = re.compile(r"\bexport\s+(?:default\s+)?(?:async\s+)?(?:function\*?|class|const|let|var|interface|type|enum)\s+(\w+)")
_JS_FUNCTION_RE = re.compile(
    r"(?:\bfunction\*?\s+(\w+)\s*\(|"
    r"\b(?:const|let|var)\s+(\w+)\s*(?::[^=]+)?=\s*(?:async\s+)?(?:\([^)]*\)|\w+)\s*(?::[^=]+)?=>)"
)
_JS_CLASS_RE = re.compile(r"\bclass\s+(\w+)")
_JS_CONTROL_RE = re.compile(r"\b(?:if|else|for|while|switch|case|try|catch)\b")
_JS_FUNC_TOKEN_RE = re.compile(r"\bfunction\b|=>")
_JS_NESTED_RE = re.compile(r"\{[^}]*\{")

# Python patterns (top level only: no leading indentation)
_PY_IMPORT_RE = re.compile(r"^(?:from\s+([\w.]+)\s+import\b|import\s+([\w.]+(?:\s*,\s*[\w.]+)*))", re.MULTILINE)
_PY_FUNCTION_RE = re.compile(r"^(?:async\s+)?def\s+(\w+)\s*\(", re.MULTILINE)
_PY_CLASS_RE = re.compile(r"^class\s+(\w+)\b", re.MULTILINE)

# Learnings extraction
_HOOK_RE = re.compile(r"\buse[A-Z]\w*")
_TYPE_RE = re.compile(r"\b(?:interface|type)\s+([A-Z]\w*)")
_API_CALL_RE = re.compile(r"""fetch\(\s*['"`]([^'"`]+)['"`]""")
_COMPONENT_RE = re.compile(r"(?:function|const)\s+([A-Z]\w*)[^\n]*(?:React\.FC|JSX\.Element)")

_MAX_PATTERN_ITEMS = 20


def _unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(i for i in items if i))


def language_for_path(path: str) -> str:
    return _LANGUAGE_BY_EXT.get(PurePosixPath(path).suffix.lower(), "text")


# ---------------------------------------------------------------------------
# Analyzer protocol
# ---------------------------------------------------------------------------


class StaticAnalyzer(Protocol):
    """Extracts lexical symbols from source text of a given language."""

    def imports(self, content: str, language: str) -> list[str]: ...

    def exports(self, content: str, language: str) -> list[str]: ...

    def functions(self, content: str, language: str) -> list[str]: ...

    def classes(self, content: str, language: str) -> list[str]: ...

    def complexity(self, content: str, language: str) -> float: ...


class RegexAnalyzer:
    """Regex-level extraction for JS/TS and Python.  Other languages yield nothing."""

    def imports(self, content: str, language: str) -> list[str]:
        if language in _JS_LANGUAGES:
            return _unique(next((g for g in m.groups() if g), "") for m in _JS_IMPORT_RE.finditer(content))
        if language == "python":
            found: list[str] = []
            for m in _PY_IMPORT_RE.finditer(content):
                if m.group(1):
                    found.append(m.group(1))
                else:
                    found.extend(part.strip() for part in m.group(2).split(","))
            return _unique(found)
        return []

    def exports(self, content: str, language: str) -> list[str]:
        if language in _JS_LANGUAGES:
            return _unique(_JS_EXPORT_RE.findall(content))
        if language == "python":
            # Public top-level names
            names = self.functions(content, language) + self.classes(content, language)
            return [n for n in names if not n.startswith("_")]
        return []

    def functions(self, content: str, language: str) -> list[str]:
        if language in _JS_LANGUAGES:
            return _unique(m.group(1) or m.group(2) for m in _JS_FUNCTION_RE.finditer(content))
        if language == "python":
            return _unique(_PY_FUNCTION_RE.findall(content))
        return []

    def classes(self, content: str, language: str) -> list[str]:
        if language in _JS_LANGUAGES:
            return _unique(_JS_CLASS_RE.findall(content))
        if language == "python":
            return _unique(_PY_CLASS_RE.findall(content))
        return []

    def complexity(self, content: str, language: str) -> float:
        score = 1.0
        if language in _JS_LANGUAGES:
            score += len(_JS_CONTROL_RE.findall(content))
            score += len(_JS_FUNC_TOKEN_RE.findall(content)) * 0.5
            score += len(_JS_NESTED_RE.findall(content)) * 0.3
        return round(score, 1)


# ---------------------------------------------------------------------------
# Indexer
# ---------------------------------------------------------------------------


class CodebaseIndexer:
    """Per-request, in-memory index persisted through ``AgentMemory.codebase_index``."""

    def __init__(self, analyzer: StaticAnalyzer | None = None) -> None:
        self.analyzer: StaticAnalyzer = analyzer or RegexAnalyzer()
        self.files: dict[str, IndexedFile] = {}

    def __len__(self) -> int:
        return len(self.files)

    def __contains__(self, path: object) -> bool:
        return path in self.files

    def get(self, path: str) -> IndexedFile | None:
        return self.files.get(path)

    def index_file(self, path: str, content: str) -> IndexedFile:
        language = language_for_path(path)
        entry = IndexedFile(
            language=language,
            imports=self.analyzer.imports(content, language),
            exports=self.analyzer.exports(content, language),
            functions=self.analyzer.functions(content, language),
            classes=self.analyzer.classes(content, language),
            last_modified=utc_now_iso(),
            size=len(content),
            complexity=self.analyzer.complexity(content, language),
        )
        self.files[path] = entry
        return entry

    def remove_file(self, path: str) -> bool:
        return self.files.pop(path, None) is not None

    # ── Persistence ──────────────────────────────────────────────────

    def load(self, data: dict[str, IndexedFile | dict[str, Any]]) -> None:
        self.files = {
            path: entry if isinstance(entry, IndexedFile) else IndexedFile.model_validate(entry)
            for path, entry in (data or {}).items()
        }

    def to_dict(self) -> dict[str, IndexedFile]:
        return dict(self.files)

    # ── Prompt context ───────────────────────────────────────────────

    def summary_for_prompt(self, max_symbols: int = 10, max_files: int = 15, max_imports: int = 10) -> str:
        """Compact description of the index.  Size does not grow with the repo."""
        if not self.files:
            return "Codebase index: no files indexed yet."

        languages = Counter(e.language for e in self.files.values())
        lines = [
            f"Codebase index: {len(self.files)} files "
            f"({', '.join(f'{lang}: {n}' for lang, n in languages.most_common())})"
        ]

        by_language: dict[str, list[str]] = {}
        for entry in self.files.values():
            by_language.setdefault(entry.language, []).extend(entry.exports)
        for language, _ in languages.most_common():
            symbols = _unique(by_language.get(language, []))
            if symbols:
                more = f" (+{len(symbols) - max_symbols} more)" if len(symbols) > max_symbols else ""
                lines.append(f"- {language} exports: {', '.join(symbols[:max_symbols])}{more}")

        imports = Counter(i for e in self.files.values() for i in e.imports)
        if imports:
            lines.append(f"- common imports: {', '.join(i for i, _ in imports.most_common(max_imports))}")

        recent = sorted(self.files.items(), key=lambda kv: kv[1].last_modified, reverse=True)[:max_files]
        lines.append("- recent files: " + ", ".join(path for path, _ in recent))
        if len(self.files) > max_files:
            lines.append(f"  (+{len(self.files) - max_files} more files)")
        return "\n".join(lines)

    # ── Learnings ────────────────────────────────────────────────────

    def extract_patterns(self, files: list[dict[str, Any]]) -> dict[str, list[str]]:
        """Lightweight summary of what a set of generated files contains."""
        patterns: dict[str, list[str]] = {
            "imports": [], "components": [], "functions": [], "hooks": [], "types": [], "apiCalls": [],
        }
        for file in files:
            content = file.get("content") or ""
            if not content:
                continue
            language = language_for_path(file.get("path", ""))
            patterns["imports"].extend(self.analyzer.imports(content, language))
            patterns["functions"].extend(self.analyzer.functions(content, language))
            if language in _JS_LANGUAGES:
                patterns["components"].extend(_COMPONENT_RE.findall(content))
                patterns["hooks"].extend(_HOOK_RE.findall(content))
                patterns["types"].extend(_TYPE_RE.findall(content))
                patterns["apiCalls"].extend(_API_CALL_RE.findall(content))
        return {key: _unique(values)[:_MAX_PATTERN_ITEMS] for key, values in patterns.items()}

    def describe_changes(self, files: list[dict[str, Any]]) -> dict[str, list[str]]:
        changes: dict[str, list[str]] = {
            "newFiles": [], "modifiedFiles": [], "deletedFiles": [], "newDependencies": [],
        }
        key_for = {"create": "newFiles", "update": "modifiedFiles", "delete": "deletedFiles"}
        for file in files:
            key = key_for.get(file.get("operation", ""))
            if key:
                changes[key].append(file.get("path", ""))
            content = file.get("content") or ""
            if content:
                changes["newDependencies"].extend(
                    self.analyzer.imports(content, language_for_path(file.get("path", "")))
                )
        changes["newDependencies"] = _unique(changes["newDependencies"])[:_MAX_PATTERN_ITEMS]
        return changes
