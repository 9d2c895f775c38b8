"""
possync Join Application - Simplified version.

Joins a host and walks a simulated player around a circle, printing every
peer the host relays.
"""
import asyncio
import argparse
import math
import time

from possync import Position, start_as_client
from possync.common import format_endpoint


async def main(server_ip: str, port: int, tick_hz: float, radius: float, duration_sec: float):
    start = time.time()

    def player_position() -> Position:
        # one lap every 4 seconds
        angle = (time.time() - start) * math.pi / 2
        return Position(radius * math.cos(angle), radius * math.sin(angle), 0.0)

    def on_move(peer):
        print(f"PEER {format_endpoint(peer.endpoint):>21s} at {peer.position}")

    session = start_as_client(
        server_ip, player_position,
        port=port,
        spawn_cb=lambda endpoint: print(f"SPAWN {format_endpoint(endpoint)}"),
        move_cb=on_move,
    )
    print(f"Joined {format_endpoint(session.server_endpoint)} for {duration_sec}s")

    loop = asyncio.get_running_loop()
    loop.call_later(duration_sec, session.stop)
    try:
        await session.run_until_shutdown(tick_hz)
    finally:
        session.close()

        stats = session.engine.stats
        print("\n" + "=" * 60)
        print("FINAL STATISTICS")
        print("=" * 60)
        print(f"  Reports sent:  {stats['tx_total']:6d} ({stats['tx_failed']} failed)")
        print(f"  Relays:        {stats['rx_accepted']:6d} applied")
        print(f"    Malformed:   {stats['drop_malformed']:6d}")
        print(f"    Foreign:     {stats['drop_foreign']:6d}")
        print(f"  Peers seen:    {len(session.registry):6d}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="possync Join")
    parser.add_argument("--server-ip", default="127.0.0.1", help="Host IP or name")
    parser.add_argument("--port", type=int, default=44445, help="Session port")
    parser.add_argument("--tick-hz", type=float, default=50, help="Ticks per second")
    parser.add_argument("--radius", type=float, default=5.0, help="Circle radius")
    parser.add_argument("--duration-sec", type=float, default=10, help="Duration")

    args = parser.parse_args()
    asyncio.run(main(args.server_ip, args.port, args.tick_hz, args.radius, args.duration_sec))
