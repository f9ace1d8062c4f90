#!/usr/bin/env python
"""
Run script for calc_pad.
Starts the notepad (or evaluates a file, or serves the API) without installing the package.
"""

from calc_pad.app import main

if __name__ == "__main__":
    main()
