"""Entry point for Machine Sync.

Usage:
    python -m machine_sync -d DIR -m MACHINE -p DEST [-u USER] [-D]
"""

from machine_sync.cli import main

if __name__ == "__main__":
    main()
