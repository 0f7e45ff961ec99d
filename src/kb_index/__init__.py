"""Keep a vector store in sync with local files and answer questions against it."""

__version__ = "0.1.0"
