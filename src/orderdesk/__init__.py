"""orderdesk: order lifecycle management with manual payment verification."""

__version__ = "0.1.0"
