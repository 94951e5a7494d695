"""
pkengine - Package query and transaction engine

Backend for PackageKit-style package management hosts, featuring:
- Deduplicated package enumeration over installed and repository sets
- Atomic install/remove/update transactions under a database lock
- SQLite package database with libsolv transaction planning
"""

__version__ = "0.1.0"
__author__ = "pkengine developers"
