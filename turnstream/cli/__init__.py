"""CLI module for turnstream."""
