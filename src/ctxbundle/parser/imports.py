"""Import/export extraction for dependency expansion.

JS/TS use regular expressions over the raw source (fast, good enough for
static imports). Python uses the stdlib ast module, with relative imports
rewritten into ``./`` and ``../`` form so every language shares one
resolution rule set.
"""

from __future__ import annotations

import ast
import re

_JS_IMPORT_PATTERNS = [
    # import x from 'y' / import { a } from "y" / export * from 'y'
    re.compile(r"""(?:^|[\s;])(?:import|export)\s[^'"`;]*?\sfrom\s+['"]([^'"]+)['"]""", re.MULTILINE),
    # side-effect import 'y'
    re.compile(r"""(?:^|[\s;])import\s+['"]([^'"]+)['"]""", re.MULTILINE),
    # require('y') / import('y')
    re.compile(r"""\b(?:require|import)\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
]

_JS_EXPORT_DECL = re.compile(
    r"^\s*export\s+(?:default\s+)?(?:async\s+)?"
    r"(?:function\*?|class|const|let|var|interface|type|enum|abstract\s+class)\s+([A-Za-z_$][\w$]*)",
    re.MULTILINE,
)
_JS_EXPORT_LIST = re.compile(r"^\s*export\s*\{([^}]*)\}", re.MULTILINE)
_JS_EXPORT_DEFAULT = re.compile(r"^\s*export\s+default\b", re.MULTILINE)

_PY_IMPORT_FALLBACK = re.compile(r"^\s*(?:from\s+(\.*[\w.]*)\s+import|import\s+([\w.]+))", re.MULTILINE)


def extract_imports(source: str, language: str) -> list[str]:
    """Return raw import strings in source order, without duplicates."""
    if language in ("javascript", "typescript"):
        found: list[tuple[int, str]] = []
        for pattern in _JS_IMPORT_PATTERNS:
            for m in pattern.finditer(source):
                found.append((m.start(1), m.group(1)))
        found.sort()
        return list(dict.fromkeys(spec for _, spec in found))
    if language == "python":
        return _python_imports(source)
    return []


def extract_exports(source: str, language: str) -> list[str]:
    """Return exported symbol names."""
    if language in ("javascript", "typescript"):
        names: list[str] = [m.group(1) for m in _JS_EXPORT_DECL.finditer(source)]
        for m in _JS_EXPORT_LIST.finditer(source):
            for part in m.group(1).split(","):
                part = part.strip()
                if not part:
                    continue
                # `a as b` exports b
                names.append(part.split(" as ")[-1].strip())
        if _JS_EXPORT_DEFAULT.search(source) and "default" not in names:
            names.append("default")
        return list(dict.fromkeys(names))
    if language == "python":
        return _python_exports(source)
    return []


def _relative_prefix(level: int) -> str:
    if level <= 1:
        return "./"
    return "../" * (level - 1)


def _python_imports(source: str) -> list[str]:
    try:
        tree = ast.parse(source)
    except SyntaxError:
        results = []
        for m in _PY_IMPORT_FALLBACK.finditer(source):
            results.append(m.group(1) or m.group(2))
        return list(dict.fromkeys(r for r in results if r and r.strip(".")))

    nodes = sorted(
        (n for n in ast.walk(tree) if isinstance(n, (ast.Import, ast.ImportFrom))),
        key=lambda n: (n.lineno, n.col_offset),
    )
    results: list[str] = []
    for node in nodes:
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append(alias.name)
        elif isinstance(node, ast.ImportFrom):
            module = node.module or ""
            if node.level:
                base = _relative_prefix(node.level) + module.replace(".", "/")
                if module:
                    results.append(base)
                for alias in node.names:
                    if alias.name != "*":
                        results.append(base.rstrip("/") + "/" + alias.name)
            else:
                results.append(module)
                for alias in node.names:
                    if alias.name != "*":
                        results.append(f"{module}.{alias.name}")
    return list(dict.fromkeys(results))


def _python_exports(source: str) -> list[str]:
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return []

    names: list[str] = []
    for node in tree.body:
        if isinstance(node, ast.Assign):
            for target in node.targets:
                if isinstance(target, ast.Name) and target.id == "__all__":
                    if isinstance(node.value, (ast.List, ast.Tuple)):
                        return [
                            elt.value
                            for elt in node.value.elts
                            if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                        ]
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            if not node.name.startswith("_"):
                names.append(node.name)
    return names
