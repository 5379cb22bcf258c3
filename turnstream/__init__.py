"""turnstream - streaming chat delivery with channel turn arbitration."""

__version__ = "0.1.0"
__logo__ = "🔁"
