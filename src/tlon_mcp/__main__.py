"""Allow `python -m tlon_mcp` to invoke the CLI entry-point."""

from .cli import main

if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()
