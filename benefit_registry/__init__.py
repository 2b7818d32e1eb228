"""Token Benefit Registry — attach benefit records to tokens and collections."""

__version__ = "0.1.0"
