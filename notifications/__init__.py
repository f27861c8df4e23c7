"""Push delivery, device subscriptions and notification dispatch."""
