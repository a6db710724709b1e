"""ctxbundle - context assembly for code-generation prompts."""

__version__ = "0.1.0"
