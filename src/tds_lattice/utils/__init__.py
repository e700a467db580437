"""Shared utilities for the lattice simulation."""
