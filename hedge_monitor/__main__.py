"""Entry point for ``python -m hedge_monitor``."""
from .cli import main

if __name__ == "__main__":
    main()
