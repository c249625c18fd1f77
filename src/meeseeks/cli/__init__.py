"""Meeseeks command-line interface."""
