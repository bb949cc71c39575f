"""Package entry point — allows ``python -m devloop``."""

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
