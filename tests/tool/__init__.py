"""Test helpers for config-sync tools."""

from config_sync.tool.config_sync import _make_parser


async def run_command(args: list[str]) -> None:
    """Parse the command line and run the selected action in process."""
    parsed = _make_parser().parse_args(args)
    await parsed.cls().run(**vars(parsed))
