#!/usr/bin/env python3
"""
otp_cli.py — command line for the companion device.

Subcommands:
- pair   : pair this device with a 16-character key
- status : show whether a device is paired
- code   : print the current code (or the code for a given time step)
- watch  : live code with countdown, refreshed every 30 s
- reset  : forget the pairing key

Examples:
    otp-device pair --key AB12CD34EF56GH78
    otp-device watch
    otp-device code --step 1000
    otp-device --db /tmp/device.db reset
"""

import argparse
import logging
import os
import sys

from core.device import DeviceService
from core.key_validator import ValidationError, sanitize
from database.db_manager import DeviceConfigStore, StorageError

EXIT_OK = 0
EXIT_NOT_PAIRED = 1
EXIT_INVALID = 2


def configure_logging(verbose: bool) -> None:
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, os.getenv("OTP_LOG_LEVEL", "WARNING").upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _service(args) -> DeviceService:
    return DeviceService(store=DeviceConfigStore(args.db))


# --- CLI command handlers ---
def cmd_pair(args) -> int:
    key = sanitize(args.key, max_length=None)
    if key != args.key:
        print(f"[*] Key normalized to {key}")
    service = _service(args)
    try:
        config = service.pair_device(key)
    except ValidationError as e:
        print(f"[-] {e.reason}")
        return EXIT_INVALID
    except StorageError as e:
        print(f"[!] Failed to save device: {e}")
        return EXIT_NOT_PAIRED
    print(f"[+] Device paired successfully at {config.created_at.isoformat()}")
    return EXIT_OK


def cmd_status(args) -> int:
    config = _service(args).load_device()
    if config is None:
        print("[-] No device paired. Run 'otp-device pair --key <KEY>'.")
        return EXIT_NOT_PAIRED
    print(f"[+] Paired since {config.created_at.isoformat()} (key {config.secret[:4]}...)")
    return EXIT_OK


def cmd_code(args) -> int:
    service = _service(args)
    config = service.load_device()
    if config is None:
        print("[-] No device paired.")
        return EXIT_NOT_PAIRED
    if args.step is not None:
        try:
            print(service.engine.compute(config.secret, args.step))
        except ValueError as e:
            print(f"[-] Invalid time step: {e}")
            return EXIT_INVALID
        return EXIT_OK
    tick = service.current_otp(config.secret)
    print(f"{tick.code}  (valid ~{tick.seconds_remaining:2d}s)")
    return EXIT_OK


def cmd_watch(args) -> int:
    service = _service(args)
    config = service.load_device()
    if config is None:
        print("[-] No device paired.")
        return EXIT_NOT_PAIRED

    print("Press Ctrl+C to quit. Showing TOTP in real time...\n")
    if service.engine.degraded:
        print("[!] HMAC-SHA1 unavailable: codes use a weak fallback hash")
    stream = service.observe_otp(config.secret)
    try:
        for tick in stream:
            if tick.refreshed:
                print(f"\nTOTP: {tick.code}  (valid ~{tick.seconds_remaining:2d}s)")
            else:
                print(f".. {tick.code}  {tick.seconds_remaining:2d}s left", end="\r", flush=True)
    except KeyboardInterrupt:
        print("\nBye.")
    finally:
        stream.close()
        service.close()
    return EXIT_OK


def cmd_reset(args) -> int:
    try:
        _service(args).reset_device()
    except StorageError as e:
        print(f"[!] Failed to reset device: {e}")
        return EXIT_NOT_PAIRED
    print("[+] Device reset. Pair again to generate codes.")
    return EXIT_OK


def cmd_help(args) -> int:
    print("'otp-device -h' for help.")
    return EXIT_OK


# --- Argparse builder ---
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="TOTP companion device (HMAC-SHA1, 30 s, 6 digits)")
    p.add_argument("--db", default=None, help="Path to the device database (default: $OTP_DEVICE_DB)")
    p.add_argument("--verbose", action="store_true", help="Verbose logging")
    sub = p.add_subparsers(dest="cmd")
    p.set_defaults(func=cmd_help)

    pp = sub.add_parser("pair", help="Pair this device with a 16-character key")
    pp.add_argument("--key", required=True, help="Pairing key, e.g. AB12CD34EF56GH78")
    pp.set_defaults(func=cmd_pair)

    ps = sub.add_parser("status", help="Show pairing status")
    ps.set_defaults(func=cmd_status)

    pc = sub.add_parser("code", help="Print the current code")
    pc.add_argument("--step", type=int, help="Explicit time step instead of now")
    pc.set_defaults(func=cmd_code)

    pw = sub.add_parser("watch", help="Show the code in real time")
    pw.set_defaults(func=cmd_watch)

    pr = sub.add_parser("reset", help="Forget the pairing key")
    pr.set_defaults(func=cmd_reset)

    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
