"""Order matching engine with a Unix socket server, a client and its binary protocol."""

__version__ = "0.1.0"
__all__ = ["__version__"]