"""Core cross-cutting pieces: exceptions and logging setup."""
