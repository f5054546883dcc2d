"""Allow ``python -m reviewtree``."""

from reviewtree.cli.main import app

app()
