"""cogsustain command-line interface."""
