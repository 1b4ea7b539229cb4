"""Reconcile local documents with a remote document service."""

__version__ = "0.4.0"
