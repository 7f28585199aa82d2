"""
PDF Conversion Service package.

This module provides a FastAPI application exposing a single endpoint that
turns a document URL into a signed link to a PDF rendition. See
`pdf_service.webapi`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
