"""
Monitor Module Entry Point

Allows execution via: python -m apps.monitor
"""

import asyncio

from apps.monitor.consumer import main

if __name__ == "__main__":
    asyncio.run(main())
