# =========================
# FILE: main.py
# =========================
"""
Autonomous Android Agent
Entry point for the application
"""

import argparse

from phoneagent.controller import run_cli


def main() -> None:
    parser = argparse.ArgumentParser(description="Drive an Android phone with a vision model.")
    parser.add_argument("--config", default="phoneagent_config.json",
                        help="settings file (created by the 'config' command)")
    args = parser.parse_args()

    print("""
    ╔═══════════════════════════════════════╗
    ║  AUTONOMOUS ANDROID AGENT            ║
    ║  screenshot → AI → action            ║
    ╚═══════════════════════════════════════╝
    """)

    run_cli(args.config)


if __name__ == "__main__":
    main()
