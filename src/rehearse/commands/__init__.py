"""CLI commands for Rehearse."""
