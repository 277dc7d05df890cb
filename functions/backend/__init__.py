"""
Backend package for The Gogfather content service.

This package provides a FastAPI application over the Firestore content
collections, with store and identity abstractions so the same code runs
against Firebase or in-memory doubles.
"""
