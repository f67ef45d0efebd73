"""Query embedding, vector persistence and embedding maintenance."""
