"""Entry-point for ``python -m repo_health``."""

from __future__ import annotations

import sys

from repo_health import __version__


def main() -> None:
    """Print a short help message and exit."""
    print(
        f"repo_health v{__version__}\n"
        "\n"
        "GitHub repository health dashboard\n"
        "\n"
        "Usage:\n"
        "  python -m repo_health                  Show this help message\n"
        "  streamlit run app/streamlit_app.py     Launch the dashboard\n"
        "\n"
        "Environment:\n"
        "  REPO_HEALTH_DATA_SOURCE   mock (default) or graphql\n"
        "  GITHUB_TOKEN              required for the graphql data source\n"
        "  REPO_HEALTH_LOG_LEVEL     logging level for the dashboard (default INFO)\n"
    )
    sys.exit(0)


if __name__ == "__main__":
    main()
