"""budget-chat: token-budgeted streaming chat."""

__version__ = "1.0.0"
