"""
Entry Point Script (Bootstrap)
==============================
Development runner that works without installing the package.

Why is this file needed?
------------------------
It is located outside the 'src' package and modifies 'sys.path' so that
imports like 'from pipetrace.model...' resolve from a plain checkout.

Usage:
    $ python run.py show project.h5
"""
import sys
import os

current_dir: str = os.path.dirname(os.path.abspath(__file__))
src_path: str = os.path.join(current_dir, 'src')
sys.path.insert(0, src_path)

from pipetrace.__main__ import main

if __name__ == "__main__":
    sys.exit(main())
