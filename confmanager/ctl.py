"""
confmanager-ctl - Inspect and change configurations on a running broker

Usage:
    # List registered applications
    confmanager-ctl list

    # Read one application's configuration (or one key)
    confmanager-ctl get confManagerApplication1
    confmanager-ctl get confManagerApplication1 --key Timeout

    # Change a value (type inferred, or forced with --type s|x|d|b)
    confmanager-ctl set confManagerApplication1 TimeoutPhrase "Please stop me"
    confmanager-ctl set confManagerApplication1 Timeout 500

    # Print every ConfigurationChanged snapshot until Ctrl+C
    confmanager-ctl watch confManagerApplication1

Output is JSON, one document per line.
"""

import argparse
import json
import signal
import sys
import threading
from typing import Any

from confmanager.bus.naming import (
    APPLICATION_SIGNAL,
    application_interface,
    application_path,
    manager_interface,
    service_path,
)
from confmanager.bus.proxy import BusProxy
from confmanager.common.exceptions import ConfManagerError
from confmanager.common.settings import SERVICE_NAME, default_bus_address
from confmanager.common.values import (
    ConfigValue,
    ValueKind,
    config_map_from_wire,
    config_map_to_json,
)


def _application_proxy(args: argparse.Namespace) -> BusProxy:
    return BusProxy(
        args.service_name,
        application_path(args.application, args.service_name),
        application_interface(args.service_name),
        args.bus_address,
    )


def list_applications(args: argparse.Namespace) -> dict:
    proxy = BusProxy(
        args.service_name,
        service_path(args.service_name),
        manager_interface(args.service_name),
        args.bus_address,
    )
    return {"success": True, "applications": proxy.call("ListApplications")}


def get_configuration(args: argparse.Namespace) -> dict:
    config_map = config_map_from_wire(_application_proxy(args).call("GetConfiguration"))
    result: dict[str, Any] = {"success": True, "application": args.application}

    if args.key:
        if args.key not in config_map:
            return {**result, "success": False, "error": f"Key not found: {args.key}"}
        value = config_map[args.key]
        result.update({"key": args.key, "type": value.kind.value, "value": value.to_json()})
    else:
        result["configuration"] = config_map_to_json(config_map)
    return result


def set_configuration(args: argparse.Namespace) -> dict:
    kind = ValueKind(args.type) if args.type else None
    value = ConfigValue.parse_literal(args.value, kind)
    _application_proxy(args).call("ChangeConfiguration", args.key, value.to_wire())
    return {
        "success": True,
        "application": args.application,
        "key": args.key,
        "type": value.kind.value,
        "value": value.to_json(),
    }


def watch_configuration(args: argparse.Namespace) -> dict:
    stop_event = threading.Event()
    signal.signal(signal.SIGINT, lambda s, f: stop_event.set())
    signal.signal(signal.SIGTERM, lambda s, f: stop_event.set())

    def on_changed(wire_map: Any) -> None:
        snapshot = config_map_to_json(config_map_from_wire(wire_map))
        print(json.dumps({"application": args.application, "configuration": snapshot}), flush=True)

    proxy = _application_proxy(args)
    proxy.ping()
    subscription = proxy.subscribe(APPLICATION_SIGNAL, on_changed)
    try:
        stop_event.wait()
    finally:
        subscription.cancel()
    return {"success": True, "application": args.application}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="confmanager-ctl",
        description="Inspect and change configurations on a running broker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--service-name", default=SERVICE_NAME, help="Broker service name")
    parser.add_argument("--bus-address", default=None, help="Bus socket path")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("list", help="List registered applications")

    get_parser = subparsers.add_parser("get", help="Read an application's configuration")
    get_parser.add_argument("application", help="Application name")
    get_parser.add_argument("--key", help="Only this key")

    set_parser = subparsers.add_parser("set", help="Change one configuration value")
    set_parser.add_argument("application", help="Application name")
    set_parser.add_argument("key", help="Configuration key")
    set_parser.add_argument("value", help="New value")
    set_parser.add_argument(
        "--type",
        choices=[kind.value for kind in ValueKind],
        help="Value type: s=string, x=int64, d=double, b=boolean (default: inferred)",
    )

    watch_parser = subparsers.add_parser("watch", help="Print configuration changes")
    watch_parser.add_argument("application", help="Application name")

    return parser


COMMANDS = {
    "list": list_applications,
    "get": get_configuration,
    "set": set_configuration,
    "watch": watch_configuration,
}


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)
    if not args.bus_address:
        args.bus_address = default_bus_address(args.service_name)

    try:
        result = COMMANDS[args.command](args)
    except ConfManagerError as e:
        result = {"success": False, "error": str(e)}

    print(json.dumps(result))
    sys.exit(0 if result.get("success") else 1)


if __name__ == "__main__":
    main()
