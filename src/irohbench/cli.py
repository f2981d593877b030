from __future__ import annotations

import argparse
import asyncio
import json
import logging
import math
import signal
from typing import Awaitable, Callable

from .client import BenchmarkDriver, SizeReport
from .config import ClientConfig, ServerConfig
from .constants import ALPN, DEFAULT_ITERATIONS, DEFAULT_QUIESCENCE_MS, DEFAULT_SIZES, MIB
from .errors import ArgumentError, BenchError
from .logconfig import LEVELS, default_level, setup_logging
from .memory import MemoryNetwork
from .peer import PeerAddress
from .server import BenchServer, DrainHandler, HandlerOutcome
from .session import TransferResult
from .transport import Endpoint

log = logging.getLogger(__name__)

BindEndpoint = Callable[[bytes | None], Awaitable[Endpoint]]


def report_payload(report: SizeReport) -> dict:
    return {
        "size_bytes": report.size_bytes,
        "samples_mbps": report.samples,
        "average_mbps": report.summary.average,
        "min_mbps": report.summary.minimum,
        "max_mbps": report.summary.maximum,
    }


def print_size_heading(size: int) -> None:
    print(f"\nTesting with {size / MIB:g} MB:", flush=True)


def print_iteration(i: int, result: TransferResult) -> None:
    print(f"Iteration {i + 1}: {result.bandwidth_mbps:.2f} Mbit/s", flush=True)


def print_summary(report: SizeReport) -> None:
    s = report.summary
    print("Bandwidth statistics (Mbit/s):")
    print(f"  Average: {s.average:.2f}")
    print(f"  Min: {s.minimum:.2f}")
    print(f"  Max: {s.maximum:.2f}", flush=True)


def make_driver(endpoint: Endpoint, peer: PeerAddress, config: ClientConfig, args: argparse.Namespace) -> BenchmarkDriver:
    if args.json:
        return BenchmarkDriver(endpoint, peer, config)
    print("\nStarting benchmarks:")
    return BenchmarkDriver(
        endpoint,
        peer,
        config,
        on_iteration=print_iteration,
        on_size_start=print_size_heading,
        on_size=print_summary,
    )


def client_config(args: argparse.Namespace) -> ClientConfig:
    sizes = []
    for mib in args.sizes_mib or ():
        if not math.isfinite(mib):
            raise ArgumentError(f"payload size must be a finite number of MiB, got {mib}")
        sizes.append(int(mib * MIB))
    return ClientConfig(
        sizes=tuple(sizes) if sizes else DEFAULT_SIZES,
        iterations=args.iterations,
        quiescence_ms=args.quiescence_ms,
        alpn=args.alpn.encode(),
    )


def print_reports(reports: list[SizeReport], args: argparse.Namespace, **extra) -> None:
    if args.json:
        payload = {**extra, "results": [report_payload(r) for r in reports]}
        print(json.dumps(payload, indent=2))


async def bind_iroh(alpn: bytes | None) -> Endpoint:
    from .iroh_transport import IrohEndpoint

    return await IrohEndpoint.bind(alpn=alpn)


async def run_client(args: argparse.Namespace, bind: BindEndpoint = bind_iroh) -> int:
    # everything the user typed is validated before the endpoint exists
    peer = PeerAddress.parse(args.public_key, relay_url=args.relay_url, direct_addresses=tuple(args.addr))
    config = client_config(args)
    if not args.json:
        print(f"Node Address: {peer.node_id}")

    endpoint = await bind(None)
    try:
        reports = await make_driver(endpoint, peer, config, args).run()
    finally:
        await endpoint.close()

    print_reports(reports, args, role="client", peer=peer.node_id)
    return 0


async def run_server(
    args: argparse.Namespace,
    bind: BindEndpoint = bind_iroh,
    stop: asyncio.Event | None = None,
) -> int:
    """Serve until `stop` is set (SIGINT/SIGTERM by default), then drain."""
    config = ServerConfig(alpn=args.alpn.encode(), max_payload=args.max_payload)

    endpoint = await bind(config.alpn)
    if args.json:
        print(json.dumps({"role": "server", "node_id": endpoint.node_id}), flush=True)
    else:
        print(f"Listening on {endpoint.node_id!r}", flush=True)

    def on_outcome(outcome: HandlerOutcome) -> None:
        log.info("session with %s done: %d bytes", outcome.peer_id, outcome.bytes_received)

    server = BenchServer(endpoint, DrainHandler(config), on_outcome=on_outcome)
    if stop is None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

    accept_loop = server.start()
    try:
        await stop.wait()
        log.info("shutting down")
        await server.shutdown(timeout=args.drain_timeout)
        await accept_loop
    finally:
        await endpoint.close()
    return 0


async def run_loopback(args: argparse.Namespace) -> int:
    """Both roles in one process over the in-memory transport."""
    config = client_config(args)
    network = MemoryNetwork()
    server_ep = network.endpoint(alpns=(config.alpn,))
    client_ep = network.endpoint(alpns=())
    server = BenchServer(server_ep, DrainHandler(ServerConfig(alpn=config.alpn)))
    accept_loop = server.start()
    try:
        reports = await make_driver(client_ep, server_ep.address, config, args).run()
    finally:
        await server.shutdown()
        await accept_loop
        await server_ep.close()
        await client_ep.close()

    print_reports(reports, args, role="bench", transport="memory")
    return 0
def cmd_client(args: argparse.Namespace) -> int:
    return asyncio.run(run_client(args))


def cmd_serve(args: argparse.Namespace) -> int:
    return asyncio.run(run_server(args))


def cmd_bench(args: argparse.Namespace) -> int:
    return asyncio.run(run_loopback(args))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="irohbench", description="Peer-to-peer throughput benchmark over iroh.")
    p.add_argument("--log-level", default=default_level(), choices=LEVELS)
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--alpn", default=ALPN.decode(), help="protocol identifier; both sides must agree")
        x.add_argument("--json", action="store_true")

    def add_matrix(x: argparse.ArgumentParser) -> None:
        x.add_argument("--sizes-mib", type=float, nargs="+", default=None, help="payload sizes in MiB")
        x.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS)
        x.add_argument("--quiescence-ms", type=int, default=DEFAULT_QUIESCENCE_MS)

    client = sub.add_parser("client", help="benchmark a remote server")
    add_common(client)
    add_matrix(client)
    client.add_argument("-p", "--public-key", required=True, help="server public key in hex")
    client.add_argument("--relay-url", default=None)
    client.add_argument("--addr", action="append", default=[], help="direct socket address hint (repeatable)")
    client.set_defaults(func=cmd_client)

    serve = sub.add_parser("serve", help="accept benchmark connections until interrupted")
    add_common(serve)
    serve.add_argument("--max-payload", type=int, default=None, help="reject streams longer than this (bytes)")
    serve.add_argument("--drain-timeout", type=float, default=None, help="seconds to wait for active sessions on shutdown")
    serve.set_defaults(func=cmd_serve)

    bench = sub.add_parser("bench", help="run client and server in-process over a loopback transport")
    add_common(bench)
    add_matrix(bench)
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return int(args.func(args))
    except ArgumentError as exc:
        log.error("invalid argument: %s", exc)
        return 2
    except BenchError as exc:
        log.error("benchmark failed: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
