#!/usr/bin/env python3
"""
Utility that sends UTF-8 text datagrams for testing the bridge listener.

Each datagram carries the message text; ``{n}`` in the message is replaced
with the running packet number.
"""

from __future__ import annotations

import argparse
import socket
import time


def main() -> None:
    parser = argparse.ArgumentParser(description="Bridge listener test sender")
    parser.add_argument("--host", default="127.0.0.1", help="Destination host")
    parser.add_argument("--port", type=int, default=10310, help="Destination UDP port")
    parser.add_argument("--message", default="HELLO {n}", help="Text to send")
    parser.add_argument(
        "--count",
        type=int,
        default=0,
        help="Number of packets to send (0 = until interrupted)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=0.5,
        help="Delay between packets in seconds",
    )
    args = parser.parse_args()

    destination = (args.host, args.port)
    print(f"Sending text datagrams to udp://{args.host}:{args.port}")

    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        n = 0
        while args.count <= 0 or n < args.count:
            n += 1
            text = args.message.replace("{n}", str(n))
            sock.sendto(text.encode("utf-8"), destination)
            print("sent:", text)
            time.sleep(max(0.0, args.interval))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nStopped.")
