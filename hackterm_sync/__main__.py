"""Allow running the CLI as `python -m hackterm_sync`."""

from .cli import main

main()
