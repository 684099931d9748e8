"""Entry point for running tidyinbox as a module.

Usage:
    python -m tidyinbox validate-config
    python -m tidyinbox --help
"""

from dotenv import load_dotenv

load_dotenv()  # TIDYINBOX_CONFIG_PATH and gateway secrets may live in .env

from tidyinbox.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
