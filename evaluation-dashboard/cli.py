#!/usr/bin/env python3
"""
Evaluation dashboard CLI — score staff against a role's checklist.

Usage:
    python cli.py --tenant T                          # Launch dashboard server
    python cli.py --tenant T --role 主任              # Pick a role
    python cli.py --tenant T --export scores.xlsx     # Download the matrix as XLSX
    python cli.py --tenant T --import scores.xlsx     # Upload items and scores
    python cli.py --tenant T --json matrix.json       # Dump the matrix as JSON

Connection settings come from EVAL_API_BASE / EVAL_TENANT_ID / EVAL_TOKEN.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

import xlsx_io
from api import EvaluationApi
from config import load_config
from errors import ImportParseError
from sync import SyncController


def _build_controller(cfg, args):
    api = EvaluationApi(cfg['api_base'], token=cfg['token'], timeout=cfg['timeout'])
    return SyncController(
        api,
        tenant_id=args.tenant,
        role=args.role,
        manager_role=cfg['manager_role'],
        self_role=cfg['self_role'],
        flush_delay=cfg['flush_delay'],
    )


def _print_summary(controller):
    template = controller.template or {}
    print(f"\n  Tenant:    {controller.tenant_id}")
    print(f"  Role:      {controller.role}")
    print(f"  Template:  {template.get('title', '(none)')}")
    print(f"  Max score: {template.get('max_score', '-')}")
    print(f"  Items:     {len(controller.items)}")
    print(f"  Staff:     {len(controller.staff)}")


async def run_once(controller, args):
    """Load once, then export and/or import. Returns a process exit code."""
    try:
        await controller.refresh()
        if controller.auth_expired or controller.error:
            print(f"Error: {controller.error}", file=sys.stderr)
            return 1
        _print_summary(controller)

        if args.import_path:
            with open(args.import_path, 'rb') as f:
                data = f.read()
            try:
                result = xlsx_io.import_file(data, args.import_path)
            except ImportParseError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1
            summary = await controller.apply_import(result)
            if summary is None:
                print(f"Error: {controller.error}", file=sys.stderr)
                return 1
            print(f"\n  Imported {summary['items']} items, {summary['scores']} scores")
            if summary['unknown_staff']:
                print(f"  Warning: unknown staff skipped: {', '.join(summary['unknown_staff'])}")
            if controller.pending_count():
                print(f"  Warning: {controller.pending_count()} scores could not be saved")

        if args.export:
            xlsx_io.export_xlsx_file(controller.items, controller.staff, controller.rows, args.export)
            print(f"\n  XLSX exported to: {args.export}")

        if args.json:
            with open(args.json, 'w', encoding='utf-8') as f:
                json.dump(controller.state(), f, indent=2, ensure_ascii=False)
            print(f"\n  JSON exported to: {args.json}")
        return 0
    finally:
        await controller.close()


def main(argv=None):
    cfg = load_config()
    ap = argparse.ArgumentParser(
        description='Evaluation dashboard — per-role staff scoring matrix'
    )
    ap.add_argument(
        '--tenant', '-t',
        default=cfg['tenant_id'],
        help='Tenant id (default: $EVAL_TENANT_ID)'
    )
    ap.add_argument(
        '--role', '-r',
        default=cfg['role'],
        help=f"Staff role (one of: {', '.join(cfg['roles'])})"
    )
    ap.add_argument(
        '--export', '-e',
        default=None,
        metavar='OUTPUT.xlsx',
        help='Export the score matrix as XLSX'
    )
    ap.add_argument(
        '--import', '-i',
        dest='import_path',
        default=None,
        metavar='INPUT.xlsx',
        help='Import items and scores from XLSX or CSV'
    )
    ap.add_argument(
        '--json', '-j',
        default=None,
        metavar='OUTPUT.json',
        help='Dump the loaded matrix as JSON'
    )
    ap.add_argument(
        '--port', '-p',
        type=int,
        default=cfg['port'],
        help='Server port (default: 8080)'
    )
    ap.add_argument(
        '--host',
        default=cfg['host'],
        help='Server host (default: 127.0.0.1)'
    )

    args = ap.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, cfg['log_level'], logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if not args.tenant:
        print("Error: no tenant given (use --tenant or EVAL_TENANT_ID)", file=sys.stderr)
        return 1
    if not cfg['token']:
        print("Error: EVAL_TOKEN is not set; log in first", file=sys.stderr)
        return 1
    if args.import_path and not os.path.exists(args.import_path):
        print(f"Error: File not found: {args.import_path}", file=sys.stderr)
        return 1

    if args.export or args.import_path or args.json:
        return asyncio.run(run_once(_build_controller(cfg, args), args))

    # Launch server
    from server import EngineLoop, run_server
    engine = EngineLoop()
    controller = _build_controller(cfg, args)
    engine.run(controller.refresh())
    print(f"\n  Starting dashboard at http://{args.host}:{args.port}")
    print("  Press Ctrl+C to stop\n")
    run_server(controller, engine, host=args.host, port=args.port)
    return 0


if __name__ == '__main__':
    sys.exit(main())
