"""closeboard: month-end close workflow backend."""
