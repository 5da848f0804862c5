"""Allow ``python -m kbindex.cli`` execution."""

from kbindex.cli.main import main

main()
