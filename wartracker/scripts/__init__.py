"""Operator scripts (run with python -m wartracker.scripts.<name>)."""
