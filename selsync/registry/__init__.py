"""Artifact registry — the HTTP package store the controller pulls charts from."""
