#!/usr/bin/env python3
"""
Whiplash HTTP Server Runner
"""

import os

from dotenv import load_dotenv

from whiplash.crosscutting.logging import setup_logging
from whiplash.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    load_dotenv()
    setup_logging(os.getenv('WHIPLASH_LOG_LEVEL', 'INFO'))
    server = HTTPServer(
        host=os.getenv('WHIPLASH_HOST', 'localhost'),
        port=int(os.getenv('WHIPLASH_PORT', '3000')),
        debug=os.getenv('WHIPLASH_DEBUG', '0') == '1'
    )
    server.run()


if __name__ == '__main__':
    main()
