"""BooksTrack - book search and discovery core

This package contains:
- Search session controller and its state machine (controller.py, state.py)
- Query normalization and ISBN helpers (validators.py)
- Error classification (errors.py)
- Barcode scan integration (scanner.py)
- Remote search service client (services/)
- CLI interface (cli.py)
"""

__version__ = "1.0.0"
