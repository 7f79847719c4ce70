"""Runtime image provisioning.

This package finalizes the last stage tree into a runtime image and
launches its entry point under the unprivileged identity.
"""
