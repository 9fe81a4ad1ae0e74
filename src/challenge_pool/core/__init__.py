"""Contracts shared between the registry and its collaborators."""
