#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Launch the listening history sync web service."""

import os
import sys


def main():
    # Load environment variables
    from dotenv import load_dotenv
    load_dotenv()

    # Check for required environment variables
    if not os.environ.get('SPOTIFY_REFRESH_TOKEN'):
        print("Warning: SPOTIFY_REFRESH_TOKEN not set")
        print("Run exchange_code.py once and copy the refresh token into .env")
        print()

    # Start the server
    import uvicorn
    uvicorn.run(
        "web.main:app",
        host=os.environ.get('HOST', '0.0.0.0'),
        port=int(os.environ.get('PORT', 3000)),
        reload='--reload' in sys.argv
    )


if __name__ == "__main__":
    main()
