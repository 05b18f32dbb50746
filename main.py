#!/usr/bin/env python3
"""Main entry point for the Japanese holiday lookup CLI."""

from holidays_jp.cli import cli

if __name__ == '__main__':
    cli()
