"""Module manifest preprocessing.

This package rewrites module manifest entries from a static toggle table
before the stage that reads the manifest configures its build.
"""
