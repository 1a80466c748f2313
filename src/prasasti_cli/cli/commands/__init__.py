"""Subcommands of the ``prasasti`` CLI."""
