from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from pathlib import Path

from .bench import run_benchmark
from .config import Config
from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_HOST,
    DEFAULT_IDLE_TIMEOUT_MS,
    DEFAULT_INPUT_DIR,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PORT,
)
from .files import collect_files, generate_files
from .instrumentation import NULL_INSTRUMENTATION, Instrumentation, LoggingInstrumentation
from .metrics import InMemoryMetrics
from .receiver import Receiver
from .sender import send_files


def _instrumentation(args: argparse.Namespace) -> Instrumentation:
    return LoggingInstrumentation(level=logging.INFO) if args.trace else NULL_INSTRUMENTATION


def _emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def cmd_recv(args: argparse.Namespace) -> int:
    config = Config(
        host=args.listen_host,
        port=args.listen_port,
        output_dir=Path(args.out),
        chunk_size=args.chunk_size,
        idle_timeout_ms=args.idle_timeout_ms,
        max_payload_bytes=args.max_payload_bytes,
        lock_target_paths=not args.no_path_locks,
    )
    metrics = InMemoryMetrics()
    recv = Receiver(config, _instrumentation(args), metrics)
    try:
        recv.serve_forever()
    except KeyboardInterrupt:
        pass
    _emit({"role": "receiver", **metrics.snapshot()}, args.json)
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    paths = [Path(p) for p in args.files]
    if args.input_dir:
        paths.extend(collect_files(args.input_dir))
    if not paths:
        logging.warning("nothing to send")
        return 0

    config = Config(
        host=args.dest_host,
        port=args.dest_port,
        input_files=tuple(paths),
        chunk_size=args.chunk_size,
        connect_timeout_ms=args.connect_timeout_ms,
    ).validate()
    metrics = InMemoryMetrics()
    results = send_files(None, config, _instrumentation(args), metrics)

    failed = [r for r in results if not r.ok]
    payload = {
        "role": "sender",
        "files": len(results),
        "failed": len(failed),
        "bytes": sum(r.original_size for r in results if r.ok),
        "compressed_bytes": sum(r.compressed_size for r in results if r.ok),
        **metrics.snapshot(),
    }
    if failed:
        payload["errors"] = {r.path: r.error for r in failed}
    _emit(payload, args.json)
    return 1 if failed else 0


def cmd_generate(args: argparse.Namespace) -> int:
    created = generate_files(args.folder, args.count, max_kib=args.max_kib)
    _emit({"role": "generate", "folder": str(args.folder), "files": len(created)}, args.json)
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    files = collect_files(args.input_dir)
    if not files:
        files = generate_files(args.input_dir, args.count, max_kib=args.max_kib)
    r = run_benchmark(files, chunk_size=args.chunk_size)
    _emit({"role": "bench", **dataclasses.asdict(r)}, args.json)
    return 0 if r.send_failures == 0 else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="cftp", description="Compressed, checksummed file transfer over TCP.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
        x.add_argument("--trace", action="store_true", help="log every instrumentation hook")
        x.add_argument("--json", action="store_true")

    recv = sub.add_parser("recv", help="accept files from any number of senders")
    add_common(recv)
    recv.add_argument("--listen-host", default="0.0.0.0")
    recv.add_argument("--listen-port", type=int, default=DEFAULT_PORT)
    recv.add_argument("--out", default=DEFAULT_OUTPUT_DIR)
    recv.add_argument("--idle-timeout-ms", type=int, default=DEFAULT_IDLE_TIMEOUT_MS)
    recv.add_argument("--max-payload-bytes", type=int, default=None)
    recv.add_argument("--no-path-locks", action="store_true", help="do not serialize writes per target path")
    recv.set_defaults(func=cmd_recv)

    send = sub.add_parser("send", help="send files, one connection per file")
    add_common(send)
    send.add_argument("--dest-host", default=DEFAULT_HOST)
    send.add_argument("--dest-port", type=int, default=DEFAULT_PORT)
    send.add_argument("--input-dir", default=None)
    send.add_argument("--connect-timeout-ms", type=int, default=DEFAULT_CONNECT_TIMEOUT_MS)
    send.add_argument("files", nargs="*")
    send.set_defaults(func=cmd_send)

    gen = sub.add_parser("generate", help="create random test files")
    gen.add_argument("--folder", default=DEFAULT_INPUT_DIR)
    gen.add_argument("--count", type=int, default=20)
    gen.add_argument("--max-kib", type=int, default=None)
    gen.add_argument("--json", action="store_true")
    gen.set_defaults(func=cmd_generate)

    bench = sub.add_parser("bench", help="loopback benchmark with concurrent senders")
    bench.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    bench.add_argument("--json", action="store_true")
    bench.add_argument("--input-dir", default=DEFAULT_INPUT_DIR)
    bench.add_argument("--count", type=int, default=8)
    bench.add_argument("--max-kib", type=int, default=1024)
    bench.set_defaults(func=cmd_bench)

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
