"""MYA command-line client."""
