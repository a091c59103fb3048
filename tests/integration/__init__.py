"""
Integration tests for the StreamForge HTTP service.

These tests drive the FastAPI app in-process. Platforms, the classifier
and vMix are never contacted.
"""
