"""Package entry point for ``python -m phrase_listener``.

WHY: Lets users try the matcher and replay recorded sessions without
installing a console script.

HOW: Delegates to the CLI's main() function.
"""

from phrase_listener.cli import main

if __name__ == "__main__":
    main()
