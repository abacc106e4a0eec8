"""Command engine: parsing, dispatch, formatting and completion."""
