#!/usr/bin/env python3
"""
StoryBridge API server.

Usage: python serve.py [port]
Default port: from config/settings.yaml (5000)
"""

import sys

from storybridge.api.server import run
from storybridge.utils.config import config


def main():
    port = int(sys.argv[1]) if len(sys.argv) > 1 else config.get("server", "port", default=5000)
    run(config.get("server", "host", default="127.0.0.1"), port)


if __name__ == "__main__":
    main()
