"""Device-side runner: report this researcher's gpsd position to the backend.

$ TRACKER_AGENT_ID=r-17 TRACKING_API_BASE=https://... python run_tracker.py
"""
import asyncio
import os

from location_client import LocationClient
from sample_publisher import GpsdSensorFeed, SamplePublisher
from tracking_config import (
    GPSD_HOST,
    GPSD_PORT,
    GPSD_READ_TIMEOUT_S,
    GPSD_RECONNECT_S,
    REPORT_INTERVAL_S,
)


async def main():
    agent_id = (os.getenv("TRACKER_AGENT_ID") or "").strip()
    if not agent_id:
        raise RuntimeError("Missing TRACKER_AGENT_ID environment variable")
    client = LocationClient.from_env()
    feed = GpsdSensorFeed(
        host=GPSD_HOST,
        port=GPSD_PORT,
        read_timeout_s=GPSD_READ_TIMEOUT_S,
        reconnect_delay_s=GPSD_RECONNECT_S,
    )
    try:
        async with SamplePublisher(feed, client, agent_id, interval_s=REPORT_INTERVAL_S) as publisher:
            while not publisher.disabled:
                await asyncio.sleep(1)
            print("[tracker] publisher disabled, exiting")
    finally:
        await client.aclose()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
