"""HTTP status API for migration reports."""
