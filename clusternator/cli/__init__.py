"""Command line interface for clusternator."""
