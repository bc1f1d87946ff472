"""Relational persistence for groups and items."""
