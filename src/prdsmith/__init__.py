"""prdsmith: interview-driven PRD generation on top of AI coding CLIs."""

__version__ = "0.1.0"
