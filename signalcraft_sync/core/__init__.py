"""Convergence engine: models, diffing, status projection, store and reconciler."""
