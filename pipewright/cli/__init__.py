"""Pipewright CLI — Typer-based command-line interface.

Provides the ``pipewright`` command with subcommands for running
pipelines, inspecting their task graph, resolving revision ids, promoting
builds between environments and monitoring runs.

All output uses Rich for formatted terminal display.
"""
