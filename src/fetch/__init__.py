"""Source acquisition.

This package fetches remote source trees into stage work trees with a
bounded, fixed-backoff retry loop.
"""
