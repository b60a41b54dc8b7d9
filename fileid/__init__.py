"""Magic-file parsing and ordering, text description and CDF timestamp helpers."""

__version__ = "0.1.0"