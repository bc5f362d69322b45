#!/usr/bin/env python3
"""
Jukebox main entry point.

Allows Jukebox to be run as a module: python3 -m jukebox
"""

import sys

from jukebox.app import main

if __name__ == "__main__":
    sys.exit(main())
