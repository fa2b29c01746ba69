"""Library Loan Desk - Core Application Package

This package contains the loan desk modules:
- Loan lifecycle engine (loans.py)
- Catalog management (catalog.py)
- Authorization policy (policy.py)
- Persistence adapters (stores.py) and database layer (database.py)
- Data models (book.py, loan.py, member.py)
- CLI interface (cli.py) and HTTP API (api.py)
"""
