"""Document records, lifecycle, persistence and text extraction."""
