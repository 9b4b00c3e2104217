"""Console entrypoint; the commands live in `stepflow.runner.main`."""

from __future__ import annotations

from stepflow.runner.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
