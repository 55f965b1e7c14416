"""LC-2K language server."""
