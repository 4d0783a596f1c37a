from tracenet.cli import cli

cli()
