"""``python -m leedz_broker agent|mail``."""

from leedz_broker.cli.main import cli

if __name__ == "__main__":
    cli()
