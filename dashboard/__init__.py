"""Client dashboard backend (encrypted client records over JSON or SQL storage)."""
