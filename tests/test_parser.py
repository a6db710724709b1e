"""Tests for file classification and import extraction."""

from __future__ import annotations

import pytest

from ctxbundle.exceptions import InvalidInputError
from ctxbundle.parser.classifier import (
    classify_file,
    content_hash,
    is_binary_path,
    is_config_file,
    is_secret_file,
    is_valid_path,
)
from ctxbundle.parser.core import describe_file, describe_files
from ctxbundle.parser.imports import extract_exports, extract_imports
from ctxbundle.parser.models import FileCategory, detect_language


class TestClassifier:
    @pytest.mark.parametrize(
        "path, category",
        [
            ("package.json", FileCategory.CONFIG),
            ("next.config.js", FileCategory.CONFIG),
            ("src/auth/login.test.ts", FileCategory.TEST),
            ("tests/test_models.py", FileCategory.TEST),
            ("src/types/order.ts", FileCategory.TYPES),
            ("src/components/Cart.tsx", FileCategory.COMPONENT),
            ("src/lib/format.ts", FileCategory.UTILITY),
            ("src/api/orders.ts", FileCategory.API),
            ("src/auth/session.ts", FileCategory.OTHER),
        ],
    )
    def test_categories(self, path: str, category: FileCategory):
        assert classify_file(path).category == category

    def test_config_checked_before_test(self):
        assert classify_file("src/__tests__/vite.config.ts").category == FileCategory.CONFIG

    def test_default_export_marks_component(self):
        content = "export default function Page() { return null }"
        assert classify_file("src/pages/home.tsx", content).category == FileCategory.COMPONENT

    def test_binary_by_extension(self):
        result = classify_file("public/logo.png")
        assert result.is_binary
        assert result.category == FileCategory.BINARY

    def test_binary_by_content(self):
        result = classify_file("data/blob.dat", "abc\x00def")
        assert result.is_binary

    def test_lockfiles_and_bundles_are_binary(self):
        assert is_binary_path("package-lock.json")
        assert is_binary_path("dist/app.min.js")
        assert is_binary_path("static/app.js.map")
        assert not is_binary_path("src/app.js")

    def test_invalid_paths(self):
        with pytest.raises(InvalidInputError):
            classify_file("")
        with pytest.raises(InvalidInputError):
            classify_file("/etc/passwd")

    def test_language(self):
        assert classify_file("src/app.tsx").language == "typescript"
        assert detect_language("main.py") == "python"
        assert detect_language("Makefile") == ""

    def test_config_files(self):
        assert is_config_file("package.json")
        assert is_config_file("frontend/tsconfig.json")
        assert is_config_file("vite.config.ts")
        assert is_config_file("README.md")
        assert is_config_file(".env.example")
        assert not is_config_file(".env")
        assert not is_config_file("src/config/index.ts")

    @pytest.mark.parametrize(
        "path, secret",
        [
            (".env", True),
            ("apps/web/.env", True),
            (".env.local", True),
            (".env.production", True),
            (".env.example", False),
            (".env.sample", False),
            (".env.template", False),
            ("src/env.ts", False),
            ("src/.envrc", False),
        ],
    )
    def test_secret_files(self, path: str, secret: bool):
        assert is_secret_file(path) is secret

    def test_valid_paths(self):
        assert is_valid_path("src/app.ts")
        assert not is_valid_path("")
        assert not is_valid_path("/etc/passwd")
        assert not is_valid_path("src/a\x00.ts")

    def test_content_hash_deterministic(self):
        assert content_hash("abc") == content_hash(b"abc")
        assert content_hash("abc") != content_hash("abd")
        assert len(content_hash("")) == 64


class TestImports:
    def test_js_imports(self):
        source = (
            "import React from 'react';\n"
            "import { a, b } from \"./utils\";\n"
            "import './styles.css';\n"
            "export * from '../shared';\n"
            "const lazy = import('./lazy');\n"
            "const fs = require('fs');\n"
        )
        assert extract_imports(source, "typescript") == [
            "react", "./utils", "./styles.css", "../shared", "./lazy", "fs",
        ]

    def test_js_imports_dedupe(self):
        source = "import a from './a';\nimport { b } from './a';\n"
        assert extract_imports(source, "javascript") == ["./a"]

    def test_js_exports(self):
        source = (
            "export function loginHandler() {}\n"
            "export const db = {};\n"
            "export interface Order {}\n"
            "export { helper as util, other };\n"
            "export default Cart;\n"
        )
        assert extract_exports(source, "typescript") == ["loginHandler", "db", "Order", "util", "other", "default"]

    def test_python_relative_imports(self):
        source = "from .models import User\nfrom .. import settings\nimport os\n"
        assert extract_imports(source, "python") == ["./models", "./models/User", "../settings", "os"]

    def test_python_absolute_from_import(self):
        source = "from app.models import User\n"
        assert extract_imports(source, "python") == ["app.models", "app.models.User"]

    def test_python_syntax_error_falls_back(self):
        source = "from .models import User\ndef broken(:\n"
        assert extract_imports(source, "python") == [".models"]

    def test_python_exports(self):
        source = "def public():\n    pass\n\ndef _private():\n    pass\n\nclass Model:\n    pass\n"
        assert extract_exports(source, "python") == ["public", "Model"]

    def test_python_all(self):
        source = "__all__ = ['a', 'b']\n\ndef c():\n    pass\n"
        assert extract_exports(source, "python") == ["a", "b"]

    def test_unknown_language(self):
        assert extract_imports("import x", "markdown") == []


class TestDescribeFile:
    def test_record_without_embedding(self, sample_files: dict[str, str]):
        record = describe_file("shop", "src/auth/login.ts", sample_files["src/auth/login.ts"])
        assert record.embedding is None
        assert record.language == "typescript"
        assert record.imports == ["./session", "@/lib/db", "react"]
        assert "loginHandler" in record.exports
        assert record.content_hash == content_hash(sample_files["src/auth/login.ts"])

    def test_binary_has_no_imports(self, sample_files: dict[str, str]):
        record = describe_file("shop", "public/logo.png", sample_files["public/logo.png"])
        assert record.category == FileCategory.BINARY
        assert record.imports == []

    def test_describe_files_sorted(self, sample_files: dict[str, str]):
        records = describe_files("shop", sample_files, version_id="v1")
        assert list(records) == sorted(sample_files)
        assert all(r.version_id == "v1" for r in records.values())
