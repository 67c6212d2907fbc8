"""Package version, reported by get_server_info and the initialize handshake."""

SERVER_NAME = "veracode-mcp"
__version__ = "0.1.0"
