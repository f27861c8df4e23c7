"""Key-value storage backends."""
