"""Deadlines, collaborators and copies."""
