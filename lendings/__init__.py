"""Lendings - Library Lending Core Package

This package contains the lending backend modules including:
- Lending numbers, lendings and fines (lending_number.py, lending.py, fine.py)
- Book and reader references (references.py)
- Lending directories, in-memory and SQLite (directory.py, database.py)
- Lending orchestration (lending_service.py)
- API endpoints (api.py) and CLI interface (main.py)
"""
