"""Command-line interface for procfilter."""
