"""Cross-cutting infrastructure: logging and clock helpers."""
