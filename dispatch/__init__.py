"""Patient transport dispatch: requests, transporters, shifts and alerts."""
