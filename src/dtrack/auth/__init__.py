"""Authentication: JWT verification and FastAPI dependencies."""
