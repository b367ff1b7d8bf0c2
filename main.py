import sys

from app.crawler.run import _cli_entrypoint

if __name__ == "__main__":
    # Subcommands: historical, nightly, health, stats.
    sys.exit(_cli_entrypoint(sys.argv[1:]))
