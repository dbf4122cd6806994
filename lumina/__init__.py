"""Lumina: a photo gallery stored in a GitHub repository."""
