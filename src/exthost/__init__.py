"""exthost: extension runtime for discovering, installing and dispatching into host plugins."""

__version__ = "0.1.0"
