"""
Module entry point for: python -m flipbook

    python -m flipbook serve [options]
    python -m flipbook render <pdf_path> -o <dir>
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
