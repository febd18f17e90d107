"""Message bus collectors."""
