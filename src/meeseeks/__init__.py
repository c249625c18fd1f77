"""Meeseeks knowledge base: crawl, index, retrieve, and fit context into model windows."""
