"""Module entrypoint for ``python -m crossrepo``."""

from __future__ import annotations

from crossrepo.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
