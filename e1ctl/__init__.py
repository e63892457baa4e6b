"""Control protocol client and server for an E1 line daemon, and E1-over-IP message codecs."""

__version__ = "0.1.0"
__all__ = ["protocol", "e1oip", "client", "server"]