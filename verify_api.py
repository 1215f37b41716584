import os
import sys
import time

import requests

API_URL = os.getenv("MODGATE_URL", "http://localhost:8000")

SAMPLES = [
    {"text": "Hello, how are you today?"},
    {"text": "Check this image", "images": [{"url": "https://upload.wikimedia.org/wikipedia/commons/4/47/PNG_transparency_demonstration_1.png"}]},
    {"text": ""},
]


def check_health():
    response = requests.get(f"{API_URL}/health", timeout=5)
    print(f"Health: {response.status_code} {response.json()}")
    return response.status_code == 200


def run_samples(video_url=None):
    samples = list(SAMPLES)
    if video_url:
        samples.append({"videos": [{"url": video_url}]})

    for payload in samples:
        print(f"\nPOST /moderate {payload}")
        start = time.time()
        try:
            response = requests.post(f"{API_URL}/moderate", json=payload, timeout=200)
            elapsed = time.time() - start
            data = response.json()
            print(f"Status: {response.status_code}")
            print(f"Time: {elapsed:.2f}s")
            print(f"Result: {data.get('result')} ({data.get('confidence')})")
            print(f"Reason: {data.get('reason')}")
            print(f"Flags: {data.get('flags')}")
        except requests.RequestException as e:
            print(f"Request failed: {e}")


if __name__ == "__main__":
    # Wait for server to start
    time.sleep(2)
    if check_health():
        run_samples(sys.argv[1] if len(sys.argv) > 1 else None)
