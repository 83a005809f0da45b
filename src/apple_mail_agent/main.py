#!/usr/bin/env python3
"""Entry point for apple-mail-agent CLI."""

import logging
import sys

from apple_mail_agent.server import SETTINGS, mcp


def main():
    """Run the Apple Mail Agent server over stdio."""
    # stdout carries the MCP protocol
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, SETTINGS.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info("Starting Apple Mail Agent server...")
    mcp.run()


if __name__ == "__main__":
    main()
