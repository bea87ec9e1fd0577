"""replyflow: safety-gated execution engine for social-messaging automation workflows."""

__version__ = "0.1.0"
