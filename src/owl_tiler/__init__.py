"""Changeset tiling for the OWL edit history database."""

__version__ = "0.1.0"
