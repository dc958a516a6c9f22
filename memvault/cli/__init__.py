"""memvault command-line interface."""
