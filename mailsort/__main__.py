"""Allow ``python -m mailsort``."""

from mailsort.cli.main import cli

cli()
