"""
crossrepo — multi-repository workspace manager.

Purpose
- Check out a set of GitHub repositories side by side, link their Bower
  dependencies to the local checkouts, and run uniform git/npm operations
  across all of them with per-repo failure isolation.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
