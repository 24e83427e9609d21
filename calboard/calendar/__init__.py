"""Feed-level processing: fetching, parsing, recurrence expansion and classification."""
