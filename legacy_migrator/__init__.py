"""
Legacy Database Migrator

A batch migration toolkit for moving a legacy relational database into a new
PostgreSQL schema.

Supports:
- Importing legacy MySQL tables with primary-key remapping
- Resolving foreign keys through per-entity mapping tables
- Duplicate detection by natural key (skip or update-if-newer)
- Promoting a local PostgreSQL database to a remote one
- Fetching remote tables verbatim into a local database
- Dry runs that report what a live run would write
"""

__version__ = "0.1.0"
