"""pairbot - multi-session chat bot with pairing-code login."""

__version__ = "0.3.0"
