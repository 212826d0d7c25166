"""Allow ``python -m tectonic``."""

from .cli import main

if __name__ == "__main__":
    main()
