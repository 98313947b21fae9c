import time

import pyfiglet
import typer
from rich.align import Align
from rich.console import Console, Group
from rich.live import Live
from rich.text import Text

from lock_in.store import StateStore
from lock_in.utils.time import format_duration_seconds


def render(remaining_seconds: int, art_text: str) -> Align:
    subtext = Text(
        f"\nFocus session in progress. {format_duration_seconds(remaining_seconds)} remaining.\n\n"
        "Unlock early with `lockin unlock --pin` or a partner code.",
        justify="center",
        style="bold yellow",
    )
    art = Text(art_text, style="bold green", justify="center")
    return Align.center(Group(art, subtext), vertical="middle")


def display(
    until: int = typer.Option(..., "--until", help="Session end as epoch ms"),
    token: str | None = typer.Option(None, "--token", help="Session the screen belongs to"),
):
    """
    Displays a centered, full-screen countdown using Rich and Pyfiglet.
    Closes itself once the session it was opened for is over.
    """
    console = Console()
    store = StateStore()
    art_text = pyfiglet.Figlet(font="block").renderText("LOCKED IN")

    console.clear()
    with Live(console=console, screen=True, refresh_per_second=1) as live:
        while True:
            remaining = int(until / 1000 - time.time())
            if remaining <= 0:
                break
            if token is not None:
                session = store.load().session
                if not session.locked or session.ui_token != token:
                    break
            live.update(render(remaining, art_text))
            time.sleep(1)


if __name__ == "__main__":
    typer.run(display)
