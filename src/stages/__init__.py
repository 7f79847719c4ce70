"""Stage execution layer.

This package runs isolated stage work trees, schedules them over the
dependency graph, and moves declared artifacts between them.
"""
