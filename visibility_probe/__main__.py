"""
Entry point for running Visibility Probe as a module.

Enables execution via:
    python -m visibility_probe [command] [options]

Examples:
    python -m visibility_probe --help
    python -m visibility_probe run --config examples/probe.config.yaml
    python -m visibility_probe show 7 --format json
"""

from visibility_probe.cli import app

if __name__ == "__main__":
    app()
