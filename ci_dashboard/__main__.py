"""
Entrypoint for running the dashboard as a module.

Usage:
    python -m ci_dashboard [OPTIONS] [PROJECT[@BRANCH,...]]...
    ci-status [OPTIONS] [PROJECT[@BRANCH,...]]...  (after pip install)
"""

from ci_dashboard.cli import main

if __name__ == "__main__":
    main()
