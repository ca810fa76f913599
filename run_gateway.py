#!/usr/bin/env python3
"""
Start the agent_runtime HTTP gateway.
"""
import sys

from agent_runtime.clients.cli.main import main

if __name__ == "__main__":
    sys.exit(main(["serve", *sys.argv[1:]]))
