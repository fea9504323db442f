#!/usr/bin/env python3
"""Run one backup from a source checkout"""
from backhaul.cli import main

if __name__ == '__main__':
    main()
