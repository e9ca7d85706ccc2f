"""
Entry point for CLI module execution.
Allows running: python -m vidstream.cli <command>
"""
from vidstream.cli.storage import main

if __name__ == '__main__':
    main()
