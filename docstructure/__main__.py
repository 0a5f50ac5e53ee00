"""
Module entry point for: python -m docstructure

Allows running the engine directly as a module:
    python -m docstructure analyze <text_file> [options]
    python -m docstructure batch <directory> [options]
    python -m docstructure parse-response <response_file> [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
