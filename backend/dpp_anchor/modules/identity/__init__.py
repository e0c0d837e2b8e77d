"""Issuer identity collaborator interface and in-process directory."""
