#!/usr/bin/env python3
"""
Convenient entry point for the agent_runtime CLI.

Usage:
    python run_cli.py [-v] [--model NAME] chat [--session ID]
    python run_cli.py run "MESSAGE"
"""
import sys

from agent_runtime.clients.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
