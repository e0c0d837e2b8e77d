"""Product registry and DTE index collaborators."""
