import typer

from pulselink.cli.commands.monitor import monitor_command
from pulselink.cli.commands.scan import scan_command

app = typer.Typer()

app.command(name="monitor")(monitor_command)
app.command(name="scan")(scan_command)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
