"""
Platform Updater - staged preparation of a platform self-update.

This package checks for a newer release, validates environment prerequisites,
classifies installed extensions against the target version and deactivates
incompatible extensions in resumable batches before reloading the runtime
without them.
"""

__version__ = "0.1.0"
