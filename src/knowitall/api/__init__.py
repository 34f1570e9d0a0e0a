"""HTTP API for document upload, status tracking and querying."""
