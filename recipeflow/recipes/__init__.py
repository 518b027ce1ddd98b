"""Recipe definitions, persistence and shipped templates."""
