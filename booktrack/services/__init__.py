"""BooksTrack - Services Package

This package contains service modules for external integrations:
- Book search proxy service
- Search result cache
- HTTP client abstraction
"""
