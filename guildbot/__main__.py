#!/usr/bin/env python3
"""
Main entry point for the Discord bot when run as a module.
Usage: python -m guildbot
"""

from .bot import main

if __name__ == "__main__":
    main()
