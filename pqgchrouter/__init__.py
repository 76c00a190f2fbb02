"""Line-delimited JSON router for clustered group key exchange sessions."""

__version__ = "0.1.0"
__all__ = ["message", "routing", "session", "server"]