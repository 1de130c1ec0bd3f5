"""Bookstore - catalog, rentals and sales

This package contains the application modules:
- Rental pricing (pricing.py) and its config slot (rental_config.py)
- Rental lifecycle and settlement (rentals.py)
- Book sales (sales.py) and invoices (payments.py)
- Catalog management (library.py)
- HTTP API (api.py) and CLI (cli.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
