#!/usr/bin/env python3
"""
Helper script to decode possync datagrams from a Wireshark hex dump.

Usage:
1. In Wireshark, right-click packet → Copy → ...as Hex Stream (UDP payload)
2. Run: python -m possync.wire_decode <hex_string>

Or pipe directly:
echo "0100000000..." | python -m possync.wire_decode
"""
import sys

from .common import DecodeError, format_endpoint
from .codec import HEADER_SIZE, MessageType, decode_message


def describe_datagram(data: bytes) -> str:
    """Render a possync datagram (or why it is malformed) as text."""
    lines = [
        "=" * 70,
        "POSSYNC DATAGRAM DECODE",
        "=" * 70,
        f"Total Length:    {len(data)} bytes",
    ]
    try:
        message = decode_message(data)
    except DecodeError as exc:
        lines.append(f"MALFORMED:       {exc}")
        lines.append(f"  Hex:           {data.hex()}")
        lines.append("=" * 70)
        return "\n".join(lines)

    lines.append(f"Header:          {HEADER_SIZE} bytes")
    lines.append(f"  Type:          {int(message.kind)} ({message.kind.name})")
    lines.append(f"  Peer:          {format_endpoint(message.peer)}")
    lines.append(f"Position:        {message.position}")
    lines.append("")
    lines.append("INTERPRETATION:")
    if message.kind == MessageType.REPORT:
        lines.append("  → Client reporting its own position to the server")
    else:
        lines.append(f"  → Server relaying position of peer {format_endpoint(message.peer)}")
    lines.append("=" * 70)
    return "\n".join(lines)


def main():
    """Main entry point."""
    if len(sys.argv) > 1:
        hex_string = ''.join(sys.argv[1:])
    else:
        print("Paste hex string (or Ctrl+D when done):")
        hex_string = sys.stdin.read()

    hex_string = hex_string.replace(' ', '').replace('\n', '').strip()
    if not hex_string:
        print("Usage: python -m possync.wire_decode <hex_string>")
        return 1

    try:
        data = bytes.fromhex(hex_string)
    except ValueError as e:
        print(f"Error: Invalid hex string: {e}")
        return 1

    print(describe_datagram(data))
    return 0


if __name__ == "__main__":
    sys.exit(main())
