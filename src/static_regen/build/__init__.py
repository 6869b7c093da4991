"""Rendering targets through the content source into the static cache."""
