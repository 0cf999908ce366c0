"""Command-line interface for sharedb."""
