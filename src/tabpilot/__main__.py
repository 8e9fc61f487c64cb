#!/usr/bin/env python3
"""
Command-line interface: snapshot, search and act on Chrome tabs.

Examples:
    python -m tabpilot launch --headless
    python -m tabpilot tabs
    python -m tabpilot snapshot
    python -m tabpilot search "Sign in|Log in"
    python -m tabpilot click a1b2c3d4
    python -m tabpilot fill a1b2c3d4 "hello world"
"""
from __future__ import annotations

import argparse
import asyncio
import json
import shutil
import subprocess
import sys
import time
from typing import List, Optional

from tabpilot.automation import Automation
from tabpilot.config import MODE_CDP, MODE_DOM, AutomationConfig, setup_logging
from tabpilot.core.errors import TabPilotError
from tabpilot.snapshot.formatter import snapshot_to_dict

CHROME_CANDIDATES = [
    "google-chrome",
    "google-chrome-stable",
    "chromium-browser",
    "chromium",
    "/opt/google/chrome/chrome",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
]


def find_chrome() -> Optional[str]:
    for candidate in CHROME_CANDIDATES:
        path = shutil.which(candidate)
        if path:
            return path
    return None


def launch_chrome(*, headless: bool = False, remote_debugging_port: int = 9222) -> bool:
    """
    Launch Chrome with remote debugging enabled and wait until it exits.

    Returns:
        True if Chrome started successfully, False otherwise.
    """
    chrome_executable = find_chrome()
    if not chrome_executable:
        print("❌ Chrome/Chromium not found. Please install Chrome or Chromium.")
        return False
    
    chrome_args = [
        chrome_executable,
        f"--remote-debugging-port={remote_debugging_port}",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-background-timer-throttling",
        "--disable-renderer-backgrounding",
        "--disable-backgrounding-occluded-windows",
        "--user-data-dir=/tmp/tabpilot-chrome-data",
        "--window-size=1280,720",
        "about:blank",
    ]
    if headless:
        chrome_args.extend(["--headless=new", "--disable-gpu"])
    
    print(f"🚀 Launching Chrome: {chrome_executable}")
    print(f"   Remote debugging on http://localhost:{remote_debugging_port}")
    print("   Press Ctrl+C to stop Chrome")
    
    try:
        process = subprocess.Popen(chrome_args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError as e:
        print(f"❌ Error launching Chrome: {e}")
        return False
    
    time.sleep(2)
    if process.poll() is not None:
        print("❌ Chrome failed to start")
        return False
    
    print("✅ Chrome started successfully!")
    try:
        process.wait()
    except KeyboardInterrupt:
        print("\n🛑 Stopping Chrome...")
        process.terminate()
        process.wait()
    return True


async def _resolve_tab(automation: Automation, tab_id: Optional[str]) -> str:
    if tab_id:
        return tab_id
    tabs = await automation.list_tabs()
    if not tabs:
        raise TabPilotError("No page tabs found")
    return tabs[0].tab_id


async def _run(args: argparse.Namespace) -> int:
    config = AutomationConfig.from_env()
    config.host = args.host
    config.port = args.port
    config.debug = args.debug
    if args.mode:
        config.default_mode = args.mode
    
    async with Automation(config) as automation:
        if args.command == "tabs":
            for tab in await automation.list_tabs():
                print(f"{tab.tab_id}  {tab.title!r}  {tab.url}")
            return 0
        
        tab_id = await _resolve_tab(automation, args.tab)
        
        if args.command == "snapshot":
            page = await automation.take_snapshot(tab_id)
            if args.json:
                snapshot = automation.provider.get_snapshot(tab_id)
                print(json.dumps(snapshot_to_dict(snapshot.root), indent=2, ensure_ascii=False))
            else:
                print(page.to_prompt())
            return 0
        
        if args.command == "search":
            print(await automation.search_elements(
                tab_id, args.query,
                context_levels=args.context,
                case_sensitive=args.case_sensitive,
                use_glob=args.glob,
            ))
            return 0
        
        # Element commands need a cached snapshot; ids survive across snapshots
        await automation.take_snapshot(tab_id)
        if args.command == "click":
            result = await automation.click(tab_id, args.uid, double=args.double)
        elif args.command == "fill":
            result = await automation.fill(tab_id, args.uid, args.value)
        elif args.command == "hover":
            result = await automation.hover(tab_id, args.uid)
        else:
            result = await automation.get_editor_value(tab_id, args.uid)
        print(result.to_message())
        return 0 if result.success else 1


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tabpilot", description="Snapshot-driven Chrome tab automation.")
    parser.add_argument("--host", default="localhost", help="DevTools host (default: localhost).")
    parser.add_argument("--port", type=int, default=9222, help="DevTools port (default: 9222).")
    parser.add_argument("--tab", help="Target tab id (default: first page tab).")
    parser.add_argument("--mode", choices=[MODE_CDP, MODE_DOM], help="Snapshot mode.")
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    
    commands = parser.add_subparsers(dest="command", required=True)
    
    launch = commands.add_parser("launch", help="Launch Chrome with remote debugging enabled.")
    launch.add_argument("--headless", action="store_true", help="Run Chrome without a visible window.")
    
    commands.add_parser("tabs", help="List page tabs.")
    
    snapshot = commands.add_parser("snapshot", help="Print the tab's snapshot.")
    snapshot.add_argument("--json", action="store_true", help="Print the snapshot tree as JSON.")
    
    search = commands.add_parser("search", help="Search the tab's snapshot.")
    search.add_argument("query", help="Terms separated by '|', optionally glob patterns.")
    search.add_argument("--context", type=int, default=1, help="Context lines around matches.")
    search.add_argument("--case-sensitive", action="store_true")
    search.add_argument("--glob", action=argparse.BooleanOptionalAction, default=None,
                        help="Force glob matching on or off (default: auto-detect).")
    
    click = commands.add_parser("click", help="Click an element.")
    click.add_argument("uid")
    click.add_argument("--double", action="store_true")
    
    fill = commands.add_parser("fill", help="Replace an element's value.")
    fill.add_argument("uid")
    fill.add_argument("value")
    
    hover = commands.add_parser("hover", help="Hover an element.")
    hover.add_argument("uid")
    
    value = commands.add_parser("value", help="Read an element's or editor's value.")
    value.add_argument("uid")
    
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    setup_logging(debug=args.debug)
    
    if args.command == "launch":
        return 0 if launch_chrome(headless=args.headless, remote_debugging_port=args.port) else 1
    
    try:
        return asyncio.run(_run(args))
    except TabPilotError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
