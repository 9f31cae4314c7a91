"""Command-line tools built on the videoassess libraries."""
