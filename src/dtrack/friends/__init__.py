"""Friendship directory."""
