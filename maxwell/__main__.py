from maxwell.cli import cli

cli()
