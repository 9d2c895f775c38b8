"""
possync Host Application.

Hosts a session on the well-known port and relays positions between
everyone who joins. Optionally plays too, standing still at the origin.
"""
import asyncio
import argparse

from possync import ORIGIN, start_as_server, get_local_address
from possync.common import format_endpoint


async def main(bind_ip: str, port: int, tick_hz: float, play: bool):
    session = start_as_server(
        (lambda: ORIGIN) if play else None,
        bind_ip=bind_ip,
        port=port,
        spawn_cb=lambda endpoint: print(f"JOIN  {format_endpoint(endpoint)}"),
    )

    print(f"Hosting on {get_local_address()}:{port} (bound {format_endpoint(session.local_endpoint)})")
    print("Give joiners the address above. Ctrl+C to stop.")

    try:
        await session.run_until_shutdown(tick_hz)
        print("\nShutting down...")
    finally:
        session.close()

        print("\n" + "=" * 60)
        print("FINAL STATISTICS FOR HOST")
        print("=" * 60)
        print(f"  Ticks:        {session.engine.ticks:6d}")
        print(f"  Peers:        {len(session.registry):6d}")
        stats = session.engine.stats
        print(f"  Reports:      {stats['rx_accepted']:6d} accepted")
        print(f"    Malformed:  {stats['drop_malformed']:6d}")
        print(f"    Unexpected: {stats['drop_unexpected']:6d}")
        print(f"  Relays:       {stats['tx_total']:6d} sent")
        print(f"    Failed:     {stats['tx_failed']:6d}")
        for endpoint in session.registry:
            peer = session.registry.get(endpoint)
            print(f"  {format_endpoint(endpoint):>21s}  at {peer.position}  ({peer.updates} updates)")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="possync Host")
    parser.add_argument("--bind-ip", default="0.0.0.0", help="Bind IP")
    parser.add_argument("--port", type=int, default=44445, help="Session port")
    parser.add_argument("--tick-hz", type=float, default=50, help="Ticks per second")
    parser.add_argument("--play", action="store_true", help="Relay a host player at the origin")

    args = parser.parse_args()
    asyncio.run(main(args.bind_ip, args.port, args.tick_hz, args.play))
