"""Services for managing the chainguard chain."""
