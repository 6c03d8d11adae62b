"""Collaborators behind the chat tools: weather API, price/scheme store, reference data, model gateway."""
