#!/usr/bin/env python3
"""
Form Filling Example

Finds the text inputs of the first open tab by searching its snapshot,
fills them in one call and reads one value back.

Prerequisites:
- Chrome must be running with debugging enabled:
  python -m tabpilot launch
- The first tab shows a form, e.g. https://httpbin.org/forms/post
"""
import asyncio
import re

from tabpilot import Automation, AutomationConfig, setup_logging

UID_RE = re.compile(r"uid=(\S+) textbox")


async def main():
    setup_logging()
    async with Automation(AutomationConfig.from_env()) as automation:
        tabs = await automation.list_tabs()
        tab_id = tabs[0].tab_id

        page = await automation.take_snapshot(tab_id)
        print(f"Page: {page.title} ({page.element_count} elements)")

        print("\nText inputs:")
        matches = await automation.search_elements(tab_id, "textbox", context_levels=0)
        print(matches)

        uids = UID_RE.findall(matches)
        if not uids:
            print("No text inputs found")
            return

        result = await automation.fill_form(
            tab_id, [(uid, f"value {i + 1}") for i, uid in enumerate(uids)]
        )
        print(f"\n{result.to_message()}")

        value = await automation.get_editor_value(tab_id, uids[0])
        print(f"First input now holds: {value.extracted_content!r}")


if __name__ == "__main__":
    asyncio.run(main())
