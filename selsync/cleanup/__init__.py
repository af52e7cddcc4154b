"""Compensating cleanup — reverting a change and removing what it published."""
