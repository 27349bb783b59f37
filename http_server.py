#!/usr/bin/env python3
"""
mshuffle HTTP Server Runner
"""

from dotenv import load_dotenv

from mshuffle.crosscutting.config import load_shuffle_settings
from mshuffle.crosscutting.logging import setup_logging
from mshuffle.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    load_dotenv()
    settings = load_shuffle_settings()
    setup_logging(settings.log_level, settings.log_file)

    server = HTTPServer(
        host='localhost',
        port=3000,
        debug=True
    )
    server.run()


if __name__ == '__main__':
    main()
