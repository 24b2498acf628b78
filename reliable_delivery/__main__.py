"""Allow ``python -m reliable_delivery``."""

from reliable_delivery.cli.main import main

if __name__ == "__main__":
    main()
