"""Usage: python -m amusic [command] ..."""

from amusic.cli import main

if __name__ == "__main__":
    main()
