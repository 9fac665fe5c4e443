"""User directory (listing, lookup and search)."""
