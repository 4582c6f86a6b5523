"""KiloLend wallet agent: multi-chain lending operations exposed over MCP."""

__version__ = "0.1.0"
