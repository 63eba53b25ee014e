"""
Persistence adapters.

These modules encapsulate how client records are stored/retrieved (a JSON
document guarded by a lock file, or a SQL table). Services depend on the
ClientStore protocol rather than touching the JSON file or the database.
"""
