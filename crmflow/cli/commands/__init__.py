"""CLI subcommands, registered in crmflow.cli.main."""
