"""
finsync - Offline-first Sync and Backup Core

The synchronization subsystem of a personal-finance mobile client.
It keeps the app usable when the backend is unreachable and converges
with the server once connectivity returns.

DESIGN PRINCIPLES:
1. The local cache is always readable, the backend is optional
2. Financial entries are replayed in the order the user created them
3. A cache write replaces a whole collection, never merges it
4. One sync pass at a time
5. Nothing in this package is fatal to the app
"""

__version__ = "1.0.0"
__author__ = "finsync Team"
