"""
Dispatcher Module Entry Point

Allows execution via: python -m apps.dispatcher

Delegates to the worker service.
"""

import asyncio

from apps.dispatcher.service import main

if __name__ == "__main__":
    asyncio.run(main())
