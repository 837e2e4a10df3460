"""CLI tools for mail-search."""
