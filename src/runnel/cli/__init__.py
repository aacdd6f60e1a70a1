"""Command-line interface for runnel."""
