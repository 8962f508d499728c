"""Allow running as ``python -m pairbot``."""

from pairbot.main import main

main()
