#!/usr/bin/env python3
"""Entry point for running the recorder service as a module."""

from services.recorder.daemon import main

if __name__ == "__main__":
    main()
