"""healwright: a bounded self-healing loop for Playwright storefront suites."""

__version__ = "0.1.0"
