"""Domain rules for client records (normalization, validation, errors)."""
