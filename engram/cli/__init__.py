"""CLI module for engram."""
