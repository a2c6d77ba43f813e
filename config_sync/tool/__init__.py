"""Command line tool for config-sync."""
