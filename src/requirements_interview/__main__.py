"""Module executed when running ``python -m requirements_interview``."""

from __future__ import annotations

from .cli import run_cli


def main() -> None:
    run_cli()


if __name__ == "__main__":  # pragma: no cover - runtime hook
    main()
