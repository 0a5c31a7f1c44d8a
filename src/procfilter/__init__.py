"""External process filters for content clean/smudge transforms."""

__version__ = "0.1.0"
