"""Task queue, forwarding ruleset loader, state store and terminal I/O for a chat-forwarding service."""

__version__ = "0.1.0"
__all__ = ["queue", "ruleset", "state", "term"]