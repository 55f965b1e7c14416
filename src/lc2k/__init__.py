"""LC-2K assembly execution engine with debugger support."""

__version__ = "0.1.0"
