"""Database client helpers."""
