"""Command-line entrypoints exposed via :mod:`nse_proxy.cli`."""

from __future__ import annotations

from nse_proxy.app.cli import build_parser, main, run_fetch

__all__ = ["build_parser", "main", "run_fetch"]


if __name__ == "__main__":
    raise SystemExit(main())
