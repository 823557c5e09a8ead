"""Message-based game networking: channels, packets and connections, independent of transport."""

__version__ = "0.1.0"