import argparse
import asyncio
import logging

from playwright.async_api import async_playwright

from sidekick.agent.orchestrator import ActionOrchestrator
from sidekick.agent.page_reader import PlaywrightSurface, describe_element_at, read_selection
from sidekick.agent.preferences import PreferenceStore
from sidekick.agent.usage_store import UsageStore
from sidekick.bridge.messaging import BackgroundEndpoint, MessagingBridge
from sidekick.config import settings
from sidekick.models import SessionLocal, init_db
from sidekick.ui.state_machine import UIState, UIStateMachine


async def run(args) -> None:
    init_db()
    orchestrator = ActionOrchestrator(
        UsageStore(SessionLocal), PreferenceStore(SessionLocal), log_session_factory=SessionLocal
    )
    orchestrator.start()
    bridge = MessagingBridge(BackgroundEndpoint(orchestrator.handle_message))

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=not args.headed)
        page = await browser.new_page()
        await page.goto(args.url, wait_until="domcontentloaded", timeout=30000)

        surface = PlaywrightSurface(page)
        await surface.refresh()
        machine = UIStateMachine(bridge, surface)

        if args.x is not None and args.y is not None:
            element = await describe_element_at(page, args.x, args.y)
            if element is None:
                print(f"No element at ({args.x}, {args.y})")
                await browser.close()
                return
            task = machine.modified_click(element, args.x, args.y)
        else:
            text, rect = await read_selection(page)
            task = machine.select_text(args.text or text, rect)

        if task is None:
            print("Nothing selected")
            await browser.close()
            return
        await task

        if machine.state is not UIState.SHOWING_PALETTE:
            print(f"No actions: {', '.join(surface.notifications) or 'empty response'}")
            await browser.close()
            return

        for action in machine.actions:
            print(f"{action.icon} {action.id}: {action.label}")

        if args.action:
            task = machine.choose_action(args.action)
            if task is None:
                print(f"Action {args.action} is not in the palette")
            else:
                await task
                if machine.result is not None:
                    print(machine.result)
                else:
                    print(", ".join(surface.notifications))

        await browser.close()
    orchestrator.stop()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--url", required=True, help="Page to open")
    parser.add_argument("--text", help="Selected text (defaults to the page's current selection)")
    parser.add_argument("--x", type=float, help="Viewport x of an element to analyse")
    parser.add_argument("--y", type=float, help="Viewport y of an element to analyse")
    parser.add_argument("--action", help="Action id to execute from the palette")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
