"""taskstate: local persistent state for a JSON-file task tracker."""

__version__ = "0.1.0"
