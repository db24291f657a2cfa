"""Diagnose kubeconfig files and the clusters they point at."""

__version__ = "1.0.0"
