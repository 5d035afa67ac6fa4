#!/usr/bin/env python3
"""
GutSafe Sync Demo Runner — preflight, test suites, scripted sync session.

Usage:
    python demo.py              Preflight, then the offline → online session
    python demo.py --check      Preflight only
    python demo.py --tests      Preflight, then every test suite
    python demo.py --all        Tests first, session after

Service addresses come from the same GUTSAFE_* settings the sync core reads.
"""

import argparse
import socket
import subprocess
import sys
from urllib.parse import urlsplit

# ─── ANSI helpers ───

RESET  = "\033[0m"
BOLD   = "\033[1m"
DIM    = "\033[2m"
RED    = "\033[91m"
GREEN  = "\033[92m"
YELLOW = "\033[93m"
CYAN   = "\033[96m"

def ok(msg):   print(f"  {GREEN}✓{RESET} {msg}")
def fail(msg): print(f"  {RED}✗{RESET} {msg}")
def info(msg): print(f"  {CYAN}→{RESET} {msg}")
def warn(msg): print(f"  {YELLOW}!{RESET} {msg}")

def heading(title):
    print(f"\n{CYAN}{BOLD}  {title}{RESET}")
    print(f"  {'─' * 40}\n")


# (import name, distribution) pairs the runtime needs
RUNTIME_PACKAGES = [
    ("redis", "redis"),
    ("asyncpg", "asyncpg"),
    ("httpx", "httpx"),
    ("fastapi", "fastapi"),
    ("pydantic_settings", "pydantic-settings"),
    ("nacl", "pynacl"),
]
TEST_PACKAGES = [
    ("pytest", "pytest"),
    ("pytest_asyncio", "pytest-asyncio"),
    ("fakeredis", "fakeredis"),
]
COMPONENTS = [
    ("GutSafe_Sync.gs_shared.field_encryptor", "FieldEncryptor"),
    ("GutSafe_Sync.gs_db.offline_cache", "OfflineCache"),
    ("GutSafe_Sync.gs_sync.network_monitor", "NetworkMonitor"),
    ("GutSafe_Sync.gs_sync.sync_coordinator", "SyncCoordinator"),
    ("GutSafe_Sync.gs_server.api", "ingest API"),
    ("GutSafe_Sync.sync_core", "SyncCore"),
]
# (label, path, needs PostgreSQL)
SUITES = [
    ("Shared: encryption, settings", "GutSafe_Sync/gs_shared/tests/", False),
    ("Device store: gateway, offline cache", "GutSafe_Sync/gs_db/tests/", False),
    ("Sync: monitor, coordinator, core", "GutSafe_Sync/gs_sync/tests/", False),
    ("Server: PostgreSQL, ingest API", "GutSafe_Sync/gs_server/tests/", True),
]


# ─── Preflight checks ───

def importable(module, label):
    try:
        __import__(module)
    except ImportError as e:
        fail(f"{label}: {e}")
        return False
    ok(f"{label} importable")
    return True


def listening(host, port, label):
    try:
        with socket.create_connection((host, port), timeout=2):
            pass
    except OSError:
        fail(f"{label} not listening on {host}:{port}")
        return False
    ok(f"{label} listening on {host}:{port}")
    return True


def service_addresses():
    """Redis and PostgreSQL endpoints as the sync core would resolve them."""
    from GutSafe_Sync.gs_shared.settings import SyncSettings
    from GutSafe_Sync.gs_server import config as srv_config

    settings = SyncSettings()
    dsn = urlsplit(settings.pg_dsn or srv_config.PG_DSN)
    return {
        "Redis": (settings.redis_host, settings.redis_port),
        "PostgreSQL": (dsn.hostname or "localhost", dsn.port or 5432),
    }


def preflight():
    """True when packages, components and both services are available."""
    heading("Preflight Checks")

    info("Runtime packages…")
    passed = [importable(mod, dist) for mod, dist in RUNTIME_PACKAGES]
    for mod, dist in TEST_PACKAGES:
        if not importable(mod, dist):
            warn(f"install the test extra to get {dist}")

    print()
    info("Components…")
    passed += [importable(mod, label) for mod, label in COMPONENTS]

    print()
    info("Services…")
    if all(passed):
        passed += [listening(host, port, name) for name, (host, port) in service_addresses().items()]

    print()
    if all(passed):
        ok(f"{BOLD}Ready{RESET}")
    else:
        fail(f"{BOLD}Not ready — resolve the failures above{RESET}")
    print()
    return all(passed)


# ─── Test runner ───

def run_tests():
    """One pytest process per suite; the server suite needs a live PostgreSQL."""
    heading("Test Suites")
    postgres = service_addresses()["PostgreSQL"]
    failures = 0

    for label, path, needs_postgres in SUITES:
        print(f"  {BOLD}── {label} ──{RESET}")
        if needs_postgres and not listening(*postgres, "PostgreSQL"):
            warn("suite skipped")
            print()
            continue

        code = subprocess.call([sys.executable, "-m", "pytest", path, "-q", "--tb=short"])
        if code == 0:
            ok(f"{label}: passed")
        else:
            fail(f"{label}: pytest exit code {code}")
            failures += 1
        print()

    return failures == 0


# ─── Scripted session ───

def run_demo():
    import asyncio
    from GutSafe_Sync.prototype import main as session
    asyncio.run(session())


# ─── Entry point ───

def parse_args():
    parser = argparse.ArgumentParser(description="GutSafe Sync demo runner")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--check", action="store_true", help="preflight only")
    mode.add_argument("--tests", action="store_true", help="run the test suites")
    mode.add_argument("--all", action="store_true", help="run the test suites, then the session")
    return parser.parse_args()


def main():
    args = parse_args()
    print(f"\n{CYAN}{BOLD}    GutSafe Sync — offline-first scan sync runner{RESET}")

    ready = preflight()
    if args.check:
        sys.exit(0 if ready else 1)
    if args.tests:
        sys.exit(0 if run_tests() else 1)

    if not ready:
        print(f"  {DIM}Start Redis and PostgreSQL, or point GUTSAFE_REDIS_HOST / GUTSAFE_PG_DSN at them{RESET}\n")
        sys.exit(1)
    if args.all and not run_tests():
        fail("test failures, session not started")
        sys.exit(1)

    run_demo()


if __name__ == "__main__":
    main()
