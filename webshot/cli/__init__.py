"""Command-line interface for Webshot."""
