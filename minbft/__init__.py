"""Messages and processing pipeline factories for a MinBFT Byzantine fault tolerant replica."""

__version__ = "0.1.0"
__all__ = [
    "generated",
    "messages",
    "options",
    "prepare",
    "processing",
    "request",
    "streams",
    "usig_ui",
    "utils",
]