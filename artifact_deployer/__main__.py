"""Module entrypoint for python -m artifact_deployer."""

from __future__ import annotations

from artifact_deployer.cli import app

# --text-logs opts back out.
MODULE_DEFAULTS = {"json_logs": True}


def main() -> None:
    """Run the CLI with JSON log lines enabled by default."""
    app(prog_name="artifact-deployer", default_map=MODULE_DEFAULTS)


if __name__ == "__main__":
    main()
