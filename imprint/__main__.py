"""
Imprint Module Entry Point
==========================

Allows running the Imprint CLI via: python -m imprint
"""

from imprint.cli import main

if __name__ == "__main__":
    main()
