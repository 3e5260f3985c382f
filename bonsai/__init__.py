"""Bons-AI multi-provider routing core."""
