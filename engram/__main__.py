"""Entry point: python -m engram"""

from engram.cli.commands import app

if __name__ == "__main__":
    app()
