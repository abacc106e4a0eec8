"""Entry point for ``python -m superpod_sim``."""

from superpod_sim.cli.app import main

if __name__ == "__main__":
    main()
