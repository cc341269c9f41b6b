"""Command line interface for dionysius."""
