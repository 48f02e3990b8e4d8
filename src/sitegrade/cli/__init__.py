"""``sitegrade`` command line."""

from sitegrade.cli.app import app

__all__ = ["app"]
