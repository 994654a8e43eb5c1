"""
Simple simulator: push a few sensor readings to the IoT ingest endpoint.
Run (after `python seed.py` and starting the API):
    python scripts/simulate_sensor.py --count 5
"""
import argparse
import os
import random
import time

import requests

API = os.getenv("AGRILINK_API", "http://localhost:8080")
API_KEY = os.getenv("AGRILINK_IOT_KEY", "DEMO_IOT_KEY_123")


def main():
    parser = argparse.ArgumentParser(description="Send fake temperature/humidity readings")
    parser.add_argument("--lot", default="DEMOLOT", help="public lot id")
    parser.add_argument("--count", type=int, default=5)
    parser.add_argument("--interval", type=float, default=1.0, help="seconds between readings")
    args = parser.parse_args()

    for i in range(args.count):
        body = {
            "lotPublicId": args.lot,
            "temp": round(random.uniform(4, 14), 2),
            "hum": round(random.uniform(60, 95), 2),
            "location": "Greenhouse A",
        }
        rr = requests.post(f"{API}/api/iot/ingest", json=body, headers={"x-api-key": API_KEY}, timeout=10)
        print("sensor", i, rr.status_code, rr.text)
        time.sleep(args.interval)


if __name__ == "__main__":
    main()
