"""User directory and notification preferences."""
