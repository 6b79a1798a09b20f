"""Command-line front end for unmark."""
