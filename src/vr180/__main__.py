"""Allow ``python -m vr180``."""

from vr180.cli import main

main()
