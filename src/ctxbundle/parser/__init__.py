"""File classification and import/export extraction."""

from ctxbundle.parser.classifier import (
    classify_file,
    content_hash,
    is_binary_path,
    is_config_file,
    is_secret_file,
    is_valid_path,
)
from ctxbundle.parser.models import FileCategory, FileClassification

__all__ = [
    "classify_file",
    "content_hash",
    "is_binary_path",
    "is_config_file",
    "is_secret_file",
    "is_valid_path",
    "FileCategory",
    "FileClassification",
]
