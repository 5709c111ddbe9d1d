"""Transactional email delivery."""
