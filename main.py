#!/usr/bin/env python3
"""
aws-doctor
==========
Diagnostics for a local AWS CLI setup.
Validates the environment, configuration files, authentication state and
connectivity, and can repair the common problems it finds.

Usage:
    python main.py doctor run
    python main.py doctor run --profile production --detailed
    python main.py doctor run --fix --dry-run
    python main.py doctor list-checks
"""

import typer
from doctor.aws_doctor import app as doctor_app

app = typer.Typer(
    name="aws-doctor",
    help="Diagnostics and repairs for AWS CLI environments.",
    rich_markup_mode="rich",
    no_args_is_help=True,
)

app.add_typer(doctor_app, name="doctor", help="Run staged health checks and diagnostics.")

if __name__ == "__main__":
    app()
