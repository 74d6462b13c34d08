"""TCP publish/subscribe broker, client and demo apps with at-least-once delivery."""

__version__ = "0.1.0"