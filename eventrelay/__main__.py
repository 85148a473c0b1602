"""Allow eventrelay to be executable through `python -m eventrelay`."""
from eventrelay.cli import cli


if __name__ == "__main__":  # pragma: no cover
    cli(prog_name="eventrelay")
