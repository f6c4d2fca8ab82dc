"""crmflow command-line interface."""
