"""Admin CLI."""
